import logging

from app.models import User

logger = logging.getLogger(__name__)


class Mailer:
    """Outbound account mail. Delivery itself happens elsewhere."""

    def send_welcome(self, user: User):
        raise NotImplementedError

    def send_forgot_password(self, user: User):
        raise NotImplementedError


class LogMailer(Mailer):
    def send_welcome(self, user: User):
        logger.info("welcome mail queued for user %s", user.pid)

    def send_forgot_password(self, user: User):
        logger.info("forgot-password mail queued for user %s", user.pid)
