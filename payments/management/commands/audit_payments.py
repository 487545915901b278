import json

from django.core.management.base import BaseCommand, CommandError

from payments.audit import Scenario, run_audit


class Command(BaseCommand):
    help = "Run the PayU conformance fixtures in rolled-back transactions and report defects."

    def add_arguments(self, parser):
        parser.add_argument(
            "--scenario",
            action="append",
            choices=[s.value for s in Scenario],
            help="Run only this scenario (repeatable)",
        )
        parser.add_argument("--json", action="store_true", help="Print the report as JSON")

    def handle(self, *args, **opts):
        scenarios = [Scenario(value) for value in opts.get("scenario") or []]
        report = run_audit(scenarios or None)

        if opts["json"]:
            self.stdout.write(json.dumps(report.as_dict(), indent=2, default=str))
        else:
            for finding in report.findings:
                if finding.passed:
                    self.stdout.write(self.style.SUCCESS(f"PASS {finding.scenario.value}"))
                    continue
                self.stdout.write(self.style.ERROR(f"FAIL {finding.scenario.value}: {finding.description}"))
                self.stdout.write(f"     expected: {finding.expected}")
                self.stdout.write(f"     observed: {finding.observed}")
                if finding.error:
                    self.stdout.write(f"     error:    {finding.error}")
                self.stdout.write(f"     fix:      {finding.remediation}")
            summary = f"{len(report.findings) - len(report.failures)}/{len(report.findings)} scenarios passed"
            self.stdout.write(self.style.SUCCESS(summary) if report.passed else self.style.WARNING(summary))

        if not report.passed:
            raise CommandError(f"{len(report.failures)} audit scenario(s) failed")
