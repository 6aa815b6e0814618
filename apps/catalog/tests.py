from decimal import Decimal

from django.contrib.auth import get_user_model
from rest_framework.test import APITestCase

from apps.audit.models import AuditLog
from apps.catalog.models import Product
from apps.stores.models import Store, StoreMember, StoreRole

User = get_user_model()


class CatalogAuditTests(APITestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner_cat", password="owner12345")
        self.cashier = User.objects.create_user(username="cashier_cat", password="cashier12345")
        self.store = Store.objects.create(name="Main Street", code="MAIN", owner=self.owner)
        self.other_store = Store.objects.create(name="Harbour", code="HARB", owner=self.owner)
        StoreMember.objects.create(store=self.store, user=self.cashier, role=StoreRole.CASHIER)

    def auth_as(self, username, password):
        response = self.client.post(
            "/api/v1/auth/token/",
            {"username": username, "password": password},
            format="json",
        )
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")

    def test_product_create_and_update_are_audited(self):
        self.auth_as("owner_cat", "owner12345")
        created = self.client.post(
            f"/api/v1/stores/{self.store.id}/products/",
            {"sku": "tv-55", "name": "55in TV", "price": "499.00"},
            format="json",
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data["sku"], "TV-55")
        product_id = created.data["id"]

        updated = self.client.patch(
            f"/api/v1/stores/{self.store.id}/products/{product_id}/",
            {"price": "449.00"},
            format="json",
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.data["price"], "449.00")

        self.assertTrue(AuditLog.objects.filter(action="catalog.product.create", entity_id=product_id).exists())
        update_entry = AuditLog.objects.get(action="catalog.product.update", entity_id=product_id)
        self.assertEqual(update_entry.payload["before"]["price"], "499.00")
        self.assertEqual(update_entry.store, self.store)

    def test_sku_is_unique_per_store_only(self):
        Product.objects.create(store=self.store, sku="TV-55", name="55in TV", price=Decimal("499.00"))
        Product.objects.create(store=self.other_store, sku="TV-55", name="55in TV", price=Decimal("499.00"))
        self.auth_as("owner_cat", "owner12345")
        duplicate = self.client.post(
            f"/api/v1/stores/{self.store.id}/products/",
            {"sku": "TV-55", "name": "Another", "price": "10.00"},
            format="json",
        )
        self.assertEqual(duplicate.status_code, 400)
        self.assertIn("sku", duplicate.data["fields"])

    def test_cashier_can_list_but_not_create(self):
        Product.objects.create(store=self.store, sku="TV-55", name="55in TV", price=Decimal("499.00"))
        Product.objects.create(store=self.other_store, sku="RADIO", name="Radio", price=Decimal("20.00"))
        self.auth_as("cashier_cat", "cashier12345")

        listed = self.client.get(f"/api/v1/stores/{self.store.id}/products/")
        self.assertEqual(listed.status_code, 200)
        self.assertEqual([row["sku"] for row in listed.data["results"]], ["TV-55"])

        created = self.client.post(
            f"/api/v1/stores/{self.store.id}/products/",
            {"sku": "NEW", "name": "New", "price": "1.00"},
            format="json",
        )
        self.assertEqual(created.status_code, 403)

        other = self.client.get(f"/api/v1/stores/{self.other_store.id}/products/")
        self.assertEqual(other.status_code, 403)
