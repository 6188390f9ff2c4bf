from tortoise import fields, models


class Posting(models.Model):
    """
    Inverted index entry: how many times ``lemma`` occurs on ``page``.
    """
    id = fields.IntField(primary_key=True)

    page = fields.ForeignKeyField(
        "models.Page",
        related_name="postings",
        on_delete=fields.CASCADE,
    )
    lemma = fields.ForeignKeyField(
        "models.Lemma",
        related_name="postings",
        on_delete=fields.CASCADE,
    )

    weight = fields.FloatField()

    class Meta:
        table = "posting"
        unique_together = (("page", "lemma"),)
