from django.contrib.auth import get_user_model
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.layby.models import LaybySettings
from apps.stores.models import Store, StoreMember, StoreRole
from apps.stores.services import has_store_access, next_document_number, user_owns_store

User = get_user_model()


class StoreAccessTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner_st", password="owner12345")
        self.manager = User.objects.create_user(username="manager_st", password="manager12345")
        self.cashier = User.objects.create_user(username="cashier_st", password="cashier12345")
        self.outsider = User.objects.create_user(username="outsider_st", password="outsider12345")

    def auth_as(self, username, password):
        token = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        ).data["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {token}")

    def make_store(self):
        store = Store.objects.create(name="Main Street", code="MAIN", owner=self.owner)
        StoreMember.objects.create(store=store, user=self.manager, role=StoreRole.MANAGER)
        StoreMember.objects.create(store=store, user=self.cashier, role=StoreRole.CASHIER)
        return store

    def test_creating_a_store_initializes_layby_settings(self):
        self.auth_as("owner_st", "owner12345")
        response = self.client.post("/api/v1/stores/", {"name": "Main Street", "code": "main"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["code"], "MAIN")
        store = Store.objects.get(pk=response.data["id"])
        self.assertEqual(store.owner, self.owner)
        settings = LaybySettings.objects.get(store=store)
        self.assertEqual(settings.max_layby_duration_days, 90)
        self.assertTrue(AuditLog.objects.filter(action="store.create", entity_id=str(store.id)).exists())

    def test_duplicate_store_code_is_rejected(self):
        self.make_store()
        self.auth_as("owner_st", "owner12345")
        response = self.client.post("/api/v1/stores/", {"name": "Copy", "code": "main"}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.data["fields"])

    def test_store_list_only_shows_accessible_stores(self):
        store = self.make_store()
        self.auth_as("cashier_st", "cashier12345")
        listed = self.client.get("/api/v1/stores/")
        self.assertEqual(listed.status_code, 200)
        self.assertEqual([row["id"] for row in listed.data["results"]], [str(store.id)])
        self.assertEqual(listed.data["results"][0]["role"], "cashier")

        self.auth_as("outsider_st", "outsider12345")
        hidden = self.client.get(f"/api/v1/stores/{store.id}/")
        self.assertEqual(hidden.status_code, 404)

    def test_only_owner_manages_members(self):
        store = self.make_store()
        self.auth_as("manager_st", "manager12345")
        members = self.client.get(f"/api/v1/stores/{store.id}/members/")
        self.assertEqual(members.status_code, 200)
        self.assertEqual(len(members.data), 2)
        forbidden = self.client.post(
            f"/api/v1/stores/{store.id}/members/",
            {"username": "outsider_st", "role": "cashier"},
            format="json",
        )
        self.assertEqual(forbidden.status_code, 403)

        self.auth_as("owner_st", "owner12345")
        added = self.client.post(
            f"/api/v1/stores/{store.id}/members/",
            {"username": "outsider_st", "role": "manager"},
            format="json",
        )
        self.assertEqual(added.status_code, 201)
        self.assertTrue(has_store_access(self.outsider, store, min_role=StoreRole.MANAGER))

        owner_role = self.client.post(
            f"/api/v1/stores/{store.id}/members/",
            {"username": "cashier_st", "role": "owner"},
            format="json",
        )
        self.assertEqual(owner_role.status_code, 400)

    def test_cashier_cannot_list_members(self):
        store = self.make_store()
        self.auth_as("cashier_st", "cashier12345")
        response = self.client.get(f"/api/v1/stores/{store.id}/members/")
        self.assertEqual(response.status_code, 403)

    def test_access_predicates(self):
        store = self.make_store()
        self.assertTrue(user_owns_store(self.owner, store))
        self.assertFalse(user_owns_store(self.manager, store))
        self.assertTrue(has_store_access(self.cashier, store))
        self.assertFalse(has_store_access(self.cashier, store, min_role=StoreRole.MANAGER))
        self.assertFalse(has_store_access(self.outsider, store))

        StoreMember.objects.filter(store=store, user=self.cashier).update(is_active=False)
        self.assertFalse(has_store_access(self.cashier, store))

    def test_document_numbers_are_zero_padded_counters(self):
        store = self.make_store()
        self.assertEqual(next_document_number(store=store, prefix="LAY", period="2026"), "LAY-2026-0001")
        self.assertEqual(next_document_number(store=store, prefix="LAY", period="2026"), "LAY-2026-0002")
        self.assertEqual(next_document_number(store=store, prefix="LAY", period="2027"), "LAY-2027-0001")
