from datetime import timezone

from marshmallow import EXCLUDE, fields, post_load

from blog.extensions.extensions import ma


class CommentSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(required=True)
    text = fields.Str(allow_none=True, load_default=None)
    media = fields.Str(allow_none=True, load_default=None)
    mediaType = fields.Str(allow_none=True, load_default=None)
    date = fields.AwareDateTime(required=True, default_timezone=timezone.utc)


class PostSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    id = fields.Str(allow_none=True, load_default=None)
    page = fields.Str(required=True)
    username = fields.Str(required=True)
    text = fields.Str(allow_none=True, load_default=None)
    media = fields.Str(allow_none=True, load_default=None)
    mediaType = fields.Str(allow_none=True, load_default=None)
    date = fields.AwareDateTime(required=True, default_timezone=timezone.utc)
    comments = fields.List(
        fields.Nested(CommentSchema),
        allow_none=True,
        load_default=list,
    )
    pendingSync = fields.Bool(load_default=False)

    @post_load
    def ensure_comments(self, data, **kwargs):
        # Older records were written without a comment list.
        if data.get("comments") is None:
            data["comments"] = []
        return data
