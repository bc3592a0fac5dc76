from datetime import timezone

from marshmallow import EXCLUDE, fields

from blog.extensions.extensions import ma


class UserSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Str(allow_none=True, load_default=None)
    username = fields.Str(required=True)
    password_hash = fields.Str(required=True)
    approved = fields.Bool(load_default=False)
    created = fields.AwareDateTime(
        allow_none=True,
        load_default=None,
        default_timezone=timezone.utc,
    )


class PendingRegistrationSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Str(allow_none=True, load_default=None)
    username = fields.Str(required=True)
    password_hash = fields.Str(required=True)
    requested = fields.AwareDateTime(
        allow_none=True,
        load_default=None,
        default_timezone=timezone.utc,
    )
    pendingSync = fields.Bool(load_default=False)


class SessionSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(required=True)
    approved = fields.Bool(load_default=False)
