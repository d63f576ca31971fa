"""
Identity relabeling of per-instance metric families.
"""

from dataclasses import replace

from ..exposition.models import FamilyCollection, IdentityContext, LabelPairs

IDENTITY_LABELS = (
    "org_name",
    "space_name",
    "app_name",
    "cf_instance_id",
    "cf_instance_number",
)


def identity_labels(identity: IdentityContext) -> LabelPairs:
    """The label pairs attributing a series to its instance."""
    return (
        ("org_name", identity.org_name),
        ("space_name", identity.space_name),
        ("app_name", identity.app_name),
        ("cf_instance_id", identity.instance_id),
        ("cf_instance_number", str(identity.instance_number)),
    )


def relabel(families: FamilyCollection, identity: IdentityContext) -> FamilyCollection:
    """Return copies of ``families`` with the identity labels appended to every series.

    Labels are appended, not merged: a series that already carries one of
    the identity label names ends up with both pairs. Families and series
    are frozen, so the input collection is left as it was.
    """
    appended = identity_labels(identity)

    relabeled: FamilyCollection = {}
    for name, family in families.items():
        series = tuple(
            replace(item, labels=item.labels + appended) for item in family.series
        )
        relabeled[name] = replace(family, series=series)
    return relabeled
