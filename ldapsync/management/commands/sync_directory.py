import logging

from django.core.management.base import BaseCommand, CommandError

from ldapsync.directories import DirectoryService
from ldapsync.exceptions import LdapSyncError

logger = logging.getLogger("django-ldapsync")


class Command(BaseCommand):
    """
    Provision new users from the LDAP directory.

    With no arguments, sync the configured directory.  The sync runs in the
    background unless ``--wait`` is given, in which case we wait for it and
    print how many users were found and inserted.
    """

    help = "Provision new users from the configured LDAP directory"

    def add_arguments(self, parser):
        parser.add_argument(
            "directory_id",
            nargs="?",
            help="The id of the directory to sync.  Defaults to the configured one.",
        )
        parser.add_argument(
            "--wait",
            action="store_true",
            help="Wait for the sync to finish and report what it did",
        )

    def handle(self, *args, **options):  # noqa: ARG002
        service = DirectoryService()
        try:
            directory_id = options["directory_id"] or service.get_active().uuid
            logger.info("sync_directory.start directory=%s", directory_id)
            handle = service.sync(directory_id)
            if not options["wait"]:
                self.stdout.write(f"Started sync of directory {directory_id}")
                return
            report = handle.result()
        except LdapSyncError as e:
            raise CommandError(str(e)) from e
        logger.info("sync_directory.end directory=%s", directory_id)
        self.stdout.write(
            self.style.SUCCESS(
                f"Directory {directory_id}: found {report.found}, "
                f"inserted {report.inserted}, failed {report.failed}"
            )
        )
