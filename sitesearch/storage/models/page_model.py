from tortoise import fields, models

from sitesearch.utils.url_utils import MAX_PATH_LENGTH


class Page(models.Model):
    """
    A fetched page; ``path`` is relative to the site root and includes the query string.
    """
    id = fields.IntField(primary_key=True)

    site = fields.ForeignKeyField(
        "models.Site",
        related_name="pages",
        on_delete=fields.CASCADE,
    )

    path = fields.CharField(max_length=MAX_PATH_LENGTH, index=True)
    code = fields.IntField()
    content = fields.TextField()
    fetched_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "page"
        unique_together = (("site", "path"),)

    def __str__(self):
        return f"{self.path} [{self.code}]"
