from django.core.management.base import BaseCommand, CommandError
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType
from django.contrib.auth import get_user_model
from disputes.models import Dispute, DisputeMessage
from disputes.permissions import MODERATORS_GROUP

User = get_user_model()

PERMISSIONS = {
    Dispute: ["view_dispute", "change_dispute"],
    DisputeMessage: ["view_disputemessage", "add_disputemessage"],
}


class Command(BaseCommand):
    help = "Creates the Moderators group, whose members can see and resolve any contract dispute."

    def add_arguments(self, parser):
        parser.add_argument('--email', type=str, help='Email of a user to add to the group')
        parser.add_argument('--remove', action='store_true', help='Remove --email from the group instead')

    def handle(self, *args, **options):
        group, created = Group.objects.get_or_create(name=MODERATORS_GROUP)
        if created:
            self.stdout.write(self.style.SUCCESS(f"Created group: {MODERATORS_GROUP}"))

        for model, codenames in PERMISSIONS.items():
            content_type = ContentType.objects.get_for_model(model)
            group.permissions.add(*Permission.objects.filter(content_type=content_type, codename__in=codenames))

        email = options['email']
        if not email:
            return

        user = User.objects.filter(email=email).first()
        if user is None:
            raise CommandError(f"User with email {email} does not exist.")

        if options['remove']:
            user.groups.remove(group)
            self.stdout.write(self.style.SUCCESS(f"{email} removed from {MODERATORS_GROUP}."))
        else:
            user.groups.add(group)
            self.stdout.write(self.style.SUCCESS(f"{email} added to {MODERATORS_GROUP}."))
