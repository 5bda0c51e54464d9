import logging

from django.conf import settings
from django.core.mail import send_mail

from .models import Notification

logger = logging.getLogger(__name__)


def notify(user, notification_type, title, message, contract=None, metadata=None):
    """
    Store an in-app notification for ``user`` and, when enabled, mirror it by email.

    Email delivery problems are logged; the stored notification is kept either way.
    """
    notification = Notification.objects.create(
        user=user,
        contract=contract,
        notification_type=notification_type,
        title=title,
        message=message,
        metadata=metadata or {},
    )

    if settings.NOTIFICATION_EMAILS_ENABLED and user.email:
        body = f"""
    Hello {user.get_full_name() or user.email},

    {message}

    The {settings.SITE_NAME} Team
    """
        try:
            send_mail(
                subject=title,
                message=body.strip(),
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[user.email],
                fail_silently=False,
            )
        except Exception:
            logger.exception("Failed to email notification %s to %s", notification.pk, user.email)

    return notification
