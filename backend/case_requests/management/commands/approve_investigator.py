from django.core.management.base import BaseCommand, CommandError

from case_requests.models import InvestigatorProfile


class Command(BaseCommand):
    help = "Set the directory status of an investigator profile."

    def add_arguments(self, parser):
        parser.add_argument("profile_id", type=int)
        parser.add_argument(
            "--status",
            default="APPROVED",
            choices=[value for value, _label in InvestigatorProfile.STATUS_CHOICES],
        )

    def handle(self, *args, **options):
        profile = InvestigatorProfile.objects.filter(id=options["profile_id"]).first()
        if not profile:
            raise CommandError(f"InvestigatorProfile {options['profile_id']} not found.")
        if profile.status == options["status"]:
            self.stdout.write(f"Investigator {profile.id} already {profile.status}.")
            return
        profile.status = options["status"]
        profile.save(update_fields=["status", "updated_at"])
        self.stdout.write(f"Investigator {profile.id} set to {profile.status}.")
