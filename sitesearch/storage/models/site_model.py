from enum import Enum

from tortoise import fields, models


class SiteStatus(str, Enum):
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


class Site(models.Model):
    """
    A configured site root and the state of its last crawl.
    """
    id = fields.IntField(primary_key=True)

    url = fields.CharField(max_length=255, unique=True)
    name = fields.CharField(max_length=255)

    status = fields.CharEnumField(SiteStatus, max_length=16, index=True)
    status_time = fields.DatetimeField()
    last_error = fields.TextField(null=True)

    class Meta:
        table = "site"

    def __str__(self):
        return f"{self.url} [{self.status}]"
