from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.email_message import DetailedMessage, MessageFilters, ThreadMessage
from services.auth_service import AuthContext, CredentialProvider
from services.errors import InvalidArgument
from services.gmail_service import GmailApi
from services.inbox_service import InboxService, MessageApi
from services.ledger import ClassificationLedger, UserStore

LOGGER = logging.getLogger(__name__)

ApiFactory = Callable[[AuthContext], MessageApi]


class TriageService:
    """Ties a user's credentials, their Gmail inbox and their verdicts together."""

    def __init__(
        self,
        classifications: ClassificationLedger,
        users: UserStore,
        credentials: CredentialProvider,
        max_emails: int = 50,
        api_factory: ApiFactory = GmailApi,
    ):
        self.classifications = classifications
        self.users = users
        self._credentials = credentials
        self._max_emails = max_emails
        self._api_factory = api_factory

    def inbox_for(self, user_id: str) -> InboxService:
        auth = self._credentials.authorize(user_id)
        return InboxService(self._api_factory(auth), default_target=self._max_emails)

    def requested_count(self, limit: Optional[int]) -> int:
        return limit if limit and limit > 0 else self._max_emails

    async def unclassified_emails(
        self,
        user_id: str,
        limit: Optional[int] = None,
        filters: Optional[MessageFilters] = None,
    ) -> Tuple[List[DetailedMessage], int]:
        inbox = self.inbox_for(user_id)
        excluded = self.classifications.list_classified_ids(user_id)
        target = self.requested_count(limit)
        emails = await inbox.fetch_unique_messages(
            target_count=target,
            filters=filters,
            exclude_ids=excluded,
            page_size=limit,
        )
        LOGGER.info("Delivered %s/%s unclassified emails to %s", len(emails), target, user_id)
        return emails, target

    async def thread(self, user_id: str, thread_id: str) -> List[ThreadMessage]:
        if not thread_id:
            raise InvalidArgument("Thread id is required.")
        return await self.inbox_for(user_id).fetch_thread(thread_id)

    def classify(self, user_id: str, entry: Dict[str, Any]) -> Dict[str, Any]:
        return self.classifications.upsert_classification({**entry, "user": user_id})
