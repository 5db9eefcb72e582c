"""
Operation and login audit records.

Writing an audit record never fails the operation being audited: if the
write fails, we log it and carry on.
"""

import logging

from django.db import DEFAULT_DB_ALIAS, DatabaseError

from .models import LoginLog, OperationLog
from .query import PageResult, search
from .typing import ConditionsData

logger = logging.getLogger("django-ldapsync")


class AuditService:

    def __init__(self, using: str = DEFAULT_DB_ALIAS) -> None:
        self.using = using

    def create_operation_log(self, log: OperationLog) -> bool:
        """
        Save ``log``.

        Returns:
            ``True`` if the record was written.

        """
        try:
            log.save(using=self.using, force_insert=True)
        except DatabaseError:
            logger.exception(
                "ldapsync.audit.operation_log.failed operator=%s operation=%s",
                log.operator,
                log.operation,
            )
            return False
        return True

    def create_login_log(self, log: LoginLog) -> bool:
        """
        Save ``log``.

        Returns:
            ``True`` if the record was written.

        """
        try:
            log.save(using=self.using, force_insert=True)
        except DatabaseError:
            logger.exception("ldapsync.audit.login_log.failed user=%s", log.user_name)
            return False
        return True

    def search_operation_logs(
        self,
        page_num: int,
        page_size: int,
        conditions: ConditionsData | None = None,
    ) -> PageResult[OperationLog]:
        return search(OperationLog.objects.using(self.using), conditions, page_num, page_size)

    def search_login_logs(
        self,
        page_num: int,
        page_size: int,
        conditions: ConditionsData | None = None,
    ) -> PageResult[LoginLog]:
        return search(LoginLog.objects.using(self.using), conditions, page_num, page_size)
