from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from case_requests.models import InvestigatorProfile
from case_requests.reviews import recompute_investigator_rating


class Command(BaseCommand):
    help = "Rebuild the denormalized rating aggregates from stored reviews."

    def add_arguments(self, parser):
        parser.add_argument("--investigator-id", type=int, default=None)

    def handle(self, *args, **options):
        profiles = InvestigatorProfile.objects.order_by("id")
        if options["investigator_id"] is not None:
            profiles = profiles.filter(id=options["investigator_id"])
            if not profiles.exists():
                raise CommandError(f"InvestigatorProfile {options['investigator_id']} not found.")
        count = 0
        for profile_id in profiles.values_list("id", flat=True):
            with transaction.atomic():
                profile = recompute_investigator_rating(profile_id)
            self.stdout.write(
                f"investigator {profile.id}: count={profile.rating_count} average={profile.rating_average}"
            )
            count += 1
        self.stdout.write(f"Recomputed {count} investigator(s).")
