from tortoise import fields, models

MAX_LEMMA_LENGTH = 255


class Lemma(models.Model):
    """
    A normal form seen on a site. ``frequency`` counts the site's pages
    containing it, not occurrences.
    """
    id = fields.IntField(primary_key=True)

    site = fields.ForeignKeyField(
        "models.Site",
        related_name="lemmas",
        on_delete=fields.CASCADE,
    )

    lemma = fields.CharField(max_length=MAX_LEMMA_LENGTH, index=True)
    frequency = fields.IntField(default=0)

    class Meta:
        table = "lemma"
        unique_together = (("site", "lemma"),)
