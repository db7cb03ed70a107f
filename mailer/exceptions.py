class MailerError(Exception):
    pass


class ValidationError(MailerError):
    """Missing or malformed request fields; raised before anything is written."""


class DuplicateRecipient(MailerError):
    def __init__(self, campaign_id, email):
        self.campaign_id = campaign_id
        self.email = email
        super().__init__(f"{email} is already queued for campaign {campaign_id}")


class TransientSendError(MailerError):
    """Provider or network failure; the delivery is retried with backoff."""


class QuotaExceeded(MailerError):
    """The day's quota cannot cover a reservation; due work waits for a later cycle."""


class NotFound(MailerError):
    pass


class InvalidTransition(MailerError):
    pass
