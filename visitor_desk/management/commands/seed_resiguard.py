from django.core.management.base import BaseCommand

from visitor_desk.snapshot import SEED_PASSWORD, seed_defaults


class Command(BaseCommand):
    help = "Write the default users, units, visitors and company profile into an empty store."

    def handle(self, *args, **options):
        if seed_defaults():
            self.stdout.write(self.style.SUCCESS(
                f"Seed data written. Default accounts use the password '{SEED_PASSWORD}'."
            ))
        else:
            self.stdout.write("Store already initialised; nothing to do.")
