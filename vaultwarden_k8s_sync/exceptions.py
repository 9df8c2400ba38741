# -*- coding: utf-8 -*-

class SyncError(Exception):
    """Base Error class."""


class InvalidArgument(SyncError, ValueError):
    CUSTOM_ERROR_MESSAGE = "Invalid {} {!r}: {}"

    def __init__(self, kind, value, reason):
        super(InvalidArgument, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(kind, value, reason))
        self._kind = kind
        self._value = value
        self._reason = reason

    @property
    def kind(self):
        return self._kind

    @property
    def value(self):
        return self._value

    @property
    def reason(self):
        return self._reason


class TargetNotFound(SyncError):
    CUSTOM_ERROR_MESSAGE = "Namespace {} does not exist"

    def __init__(self, namespace):
        super(TargetNotFound, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(namespace))
        self._namespace = namespace

    @property
    def namespace(self):
        return self._namespace


class SecretNotFound(SyncError):
    CUSTOM_ERROR_MESSAGE = "Secret {}/{} does not exist"

    def __init__(self, namespace, name):
        super(SecretNotFound, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(namespace, name))
        self._namespace = namespace
        self._name = name

    @property
    def namespace(self):
        return self._namespace

    @property
    def name(self):
        return self._name


class TransientTransport(SyncError):
    CUSTOM_ERROR_MESSAGE = "Transport call {} failed error {}"

    def __init__(self, operation, error):
        super(TransientTransport, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(operation,
                                                                                  str(error)))
        self._operation = operation
        self._error = error

    @property
    def operation(self):
        return self._operation

    @property
    def error(self):
        return self._error


class AuthenticationFailure(SyncError):
    CUSTOM_ERROR_MESSAGE = "Authentication with the vault failed: {}"

    def __init__(self, reason):
        super(AuthenticationFailure, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(reason))


class PersistentEmptySource(SyncError):
    CUSTOM_ERROR_MESSAGE = "Vault returned no items after re-authentication, previous sync saw {} items"

    def __init__(self, previous_count):
        super(PersistentEmptySource, self).__init__(
            self.CUSTOM_ERROR_MESSAGE.format(previous_count))
        self._previous_count = previous_count

    @property
    def previous_count(self):
        return self._previous_count


class SyncAlreadyRunning(SyncError):
    CUSTOM_ERROR_MESSAGE = "Another sync holds lock {}"

    def __init__(self, lock_path):
        super(SyncAlreadyRunning, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(lock_path))
        self._lock_path = lock_path

    @property
    def lock_path(self):
        return self._lock_path
