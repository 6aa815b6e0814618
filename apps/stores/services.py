from django.db import transaction

from apps.stores.models import ROLE_RANK, DocumentSequence, StoreMember, StoreRole


def resolve_store_role(user, store):
    """Return the caller's role in ``store`` or ``None`` when they have no access."""
    if not user or not user.is_authenticated or not store.is_active:
        return None
    if store.owner_id == user.pk:
        return StoreRole.OWNER
    membership = StoreMember.objects.filter(store=store, user=user, is_active=True).only("role").first()
    if membership is None:
        return None
    return StoreRole(membership.role)


def has_store_access(user, store, min_role=None):
    role = resolve_store_role(user, store)
    if role is None:
        return False
    if min_role is None:
        return True
    return ROLE_RANK[role] >= ROLE_RANK[StoreRole(min_role)]


def user_owns_store(user, store):
    return bool(user and user.is_authenticated and store.owner_id == user.pk)


def next_document_number(*, store, prefix, period, width=4):
    """Allocate the next ``PREFIX-PERIOD-NNNN`` number for a store.

    The counter row is locked for the rest of the surrounding transaction, so
    two writers in the same store and period never receive the same number.
    """
    with transaction.atomic():
        sequence, _ = DocumentSequence.objects.get_or_create(store=store, prefix=prefix, period=period)
        sequence = DocumentSequence.objects.select_for_update().get(pk=sequence.pk)
        sequence.last_value += 1
        sequence.save(update_fields=["last_value"])
    return f"{prefix}-{period}-{sequence.last_value:0{width}d}"
