"""DynamoDB-backed booking and account storage."""
import logging
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from gcal.auth import TOKEN_ATTRIBUTE
from sync.models import Booking

logger = logging.getLogger(__name__)


class BookingStore:
    """Read bookings and calendar tokens from DynamoDB."""

    USER_INDEX = 'userId-index'
    REQUIRED_ATTRIBUTES = ('summary', 'date', 'startDateTime', 'endDateTime')

    def __init__(
        self,
        bookings_table: str,
        accounts_table: str,
        region_name: Optional[str] = None
    ):
        """
        Initialize DynamoDB resource and table references.

        Args:
            bookings_table: Name of the bookings table
            accounts_table: Name of the accounts table holding OAuth tokens
            region_name: Optional AWS region, defaults to the environment
        """
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.bookings = self.dynamodb.Table(bookings_table)
        self.accounts = self.dynamodb.Table(accounts_table)
        logger.info(
            f"Initialized BookingStore for tables: {bookings_table}, {accounts_table}"
        )

    def get_bookings_for_account(self, account_id: str) -> List[Booking]:
        """
        Retrieve every booking owned by an account, regardless of status or date.

        Args:
            account_id: Owning account identifier

        Returns:
            List of Booking objects in the order DynamoDB returns them

        Raises:
            ClientError: If the query fails
        """
        logger.info(f"Querying bookings for account {account_id}")

        try:
            response = self.bookings.query(
                IndexName=self.USER_INDEX,
                KeyConditionExpression=Key('userId').eq(account_id)
            )
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.bookings.query(
                    IndexName=self.USER_INDEX,
                    KeyConditionExpression=Key('userId').eq(account_id),
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

        except ClientError as e:
            logger.error(f"Error querying bookings for account {account_id}: {e}")
            raise

        bookings = [self._item_to_booking(item) for item in items]

        logger.info(f"Retrieved {len(bookings)} bookings for account {account_id}")
        return bookings

    def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Return the account item, or None if it does not exist."""
        try:
            response = self.accounts.get_item(Key={'id': account_id})
        except ClientError as e:
            logger.error(f"Error reading account {account_id}: {e}")
            raise
        return response.get('Item')

    def get_token(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored calendar token map for an account, if any."""
        account = self.get_account(account_id)
        if not account:
            return None
        return account.get(TOKEN_ATTRIBUTE)

    def save_token(self, account_id: str, token: Dict[str, Any]) -> None:
        """
        Merge the calendar token map into the account item.

        Args:
            account_id: Account identifier
            token: Token map as returned by the OAuth token endpoint
        """
        try:
            self.accounts.update_item(
                Key={'id': account_id},
                UpdateExpression='SET #token = :token',
                ExpressionAttributeNames={'#token': TOKEN_ATTRIBUTE},
                ExpressionAttributeValues={':token': self._to_dynamodb(token)}
            )
        except ClientError as e:
            logger.error(f"Error saving calendar token for account {account_id}: {e}")
            raise
        logger.info(f"Saved calendar token for account {account_id}")

    def clear_token(self, account_id: str) -> None:
        """Remove the calendar token from the account, disconnecting the calendar."""
        try:
            self.accounts.update_item(
                Key={'id': account_id},
                UpdateExpression='REMOVE #token',
                ExpressionAttributeNames={'#token': TOKEN_ATTRIBUTE}
            )
        except ClientError as e:
            logger.error(f"Error clearing calendar token for account {account_id}: {e}")
            raise
        logger.info(f"Cleared calendar token for account {account_id}")

    def link_booking(self, booking_id: str, event_id: str, synced_date: str) -> None:
        """
        Store the remote event reference and the date it was pushed with.

        Args:
            booking_id: Booking identifier
            event_id: Remote calendar event id
            synced_date: Booking date as of this push
        """
        try:
            self.bookings.update_item(
                Key={'id': booking_id},
                UpdateExpression='SET eventId = :event_id, lastSyncedDate = :synced_date',
                ExpressionAttributeValues={
                    ':event_id': event_id,
                    ':synced_date': synced_date
                }
            )
        except ClientError as e:
            logger.error(f"Error linking booking {booking_id} to event {event_id}: {e}")
            raise
        logger.debug(f"Linked booking {booking_id} to event {event_id}")

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        """Return a single booking, or None if it does not exist."""
        try:
            response = self.bookings.get_item(Key={'id': booking_id})
        except ClientError as e:
            logger.error(f"Error reading booking {booking_id}: {e}")
            raise
        item = response.get('Item')
        return self._item_to_booking(item) if item else None

    def _item_to_booking(self, item: dict) -> Booking:
        """
        Convert DynamoDB item to Booking object.

        Missing display and date attributes default to empty strings so that
        an incomplete booking still claims its linked calendar event.

        Args:
            item: DynamoDB item dictionary

        Returns:
            Booking object
        """
        missing = [name for name in self.REQUIRED_ATTRIBUTES if not item.get(name)]
        if missing:
            logger.warning(f"Booking {item['id']} is missing {', '.join(missing)}")

        return Booking(
            id=item['id'],
            user_id=item['userId'],
            summary=item.get('summary', ''),
            date=item.get('date', ''),
            start_date_time=item.get('startDateTime', ''),
            end_date_time=item.get('endDateTime', ''),
            status=item.get('status', 'confirmed'),
            description=item.get('description'),
            event_id=item.get('eventId') or None,
            last_synced_date=item.get('lastSyncedDate')
        )

    def _to_dynamodb(self, value: Any) -> Any:
        # DynamoDB rejects floats
        if isinstance(value, float):
            return int(value)
        if isinstance(value, dict):
            return {k: self._to_dynamodb(v) for k, v in value.items() if v is not None}
        return value
