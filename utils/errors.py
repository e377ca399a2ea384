# utils/errors.py
# Request/batch level failures. Malformed attendees and personnel misses are
# not exceptions; they end up in summaries.


class ReconcileError(Exception):
    """Base class for training registration errors."""


class AuthorizationError(ReconcileError):
    """Caller is not signed in or lacks the required role."""


class TrainingNotFound(ReconcileError):
    def __init__(self, training_id):
        super().__init__(f"Training not found: {training_id}")
        self.training_id = training_id


class RegistrationError(ReconcileError):
    """A register/cancel action was refused (full, closed, duplicate...)."""


class ConcurrentUpdateError(ReconcileError):
    """A compare-and-set write kept losing to concurrent writers."""


class NotMigratedError(RegistrationError):
    """Embedded attendees have not all reached training_registrations yet."""

    def __init__(self, training_id):
        super().__init__("Registrations for this training are still being migrated; "
                         "ask an administrator to run the migration and try again")
        self.training_id = training_id
