import time

import jwt
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from case_requests.models import UserAccount


class Command(BaseCommand):
    help = "Issue a signed bearer token for a user account (local development only)."

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument("--ttl", type=int, default=3600)

    def handle(self, *args, **options):
        secret = settings.LIRA_JWT_SECRET
        if not secret:
            raise CommandError("LIRA_JWT_SECRET is required")
        user = UserAccount.objects.filter(id=options["user_id"]).first()
        if not user:
            raise CommandError(f"UserAccount {options['user_id']} not found.")
        now = int(time.time())
        payload = {
            "iss": settings.LIRA_JWT_ISSUER,
            "aud": settings.LIRA_JWT_AUDIENCE,
            "iat": now,
            "exp": now + options["ttl"],
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
        }
        self.stdout.write(jwt.encode(payload, secret, algorithm="HS256"))
