import logging

from django.core.management.base import BaseCommand, CommandError

from workdays.aggregation import LedgerAuditService

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Compare schedule node aggregates with the workday hours ledger. Read-only."

    def add_arguments(self, parser):
        parser.add_argument(
            "--project",
            type=int,
            default=None,
            help="Only audit this project id.",
        )
        parser.add_argument(
            "--fail-on-findings",
            action="store_true",
            help="Exit with an error when anything is reported.",
        )

    def handle(self, *args, **options):
        findings = LedgerAuditService.audit(project_id=options["project"])

        for finding in findings:
            line = f"[{finding.kind}] #{finding.object_id}: {finding.message}"
            self.stdout.write(self.style.WARNING(line))

        logger.info("Ledger audit finished with %d findings", len(findings))
        if not findings:
            self.stdout.write(self.style.SUCCESS("Ledger and schedule aggregates are consistent"))
        elif options["fail_on_findings"]:
            raise CommandError(f"{len(findings)} ledger findings")
