"""Tests for the entity registry and the display formatters."""
from datetime import datetime, timedelta

from activitylog.services.formatting import field_label, format_date, format_time, format_value, time_ago
from activitylog.services.registry import EntityRegistry
from conftest import Item, SaleItem, User


class TestEntityRegistry:

    def test_load_coerces_string_ids(self, registry, db_session, sample_sale):
        line = registry.load(db_session, "SaleItem", "7")
        assert line is not None
        assert line.quantity == 2

    def test_unknown_type_loads_nothing(self, registry, db_session):
        assert registry.load(db_session, "Ghost", "1") is None
        assert "Ghost" not in registry

    def test_display_name_fallback(self, registry):
        assert registry.display_name("SaleItem") == "Sale item"
        assert registry.display_name("billing.Invoice") == "Invoice"

    def test_describe_relations_uses_related_aliases(self, registry):
        [relation] = registry.describe_relations("SaleItem")

        assert relation.name == "item"
        assert relation.fields == ("id", "name", "code")
        assert relation.aliases == {"name": "description"}

    def test_unregistered_relation_is_skipped(self, config, db_session):
        registry = EntityRegistry(config)
        registry.register_model("SaleItem", SaleItem)

        assert registry.describe_relations("SaleItem") == []

    def test_type_without_configured_relations(self, registry):
        assert registry.describe_relations("Sale") == []

    def test_relation_read_omits_missing_fields(self, registry):
        [relation] = registry.describe_relations("SaleItem")
        line = SaleItem(id=1, item=Item(id=3, code="X-3", description=None))

        assert relation.read(line) == {"id": 3, "code": "X-3"}

    def test_relation_read_without_related_record(self, registry):
        [relation] = registry.describe_relations("SaleItem")
        assert relation.read(SaleItem(id=1)) is None


class TestActorLookup:

    def test_actor_record_is_snapshotted(self, registry, db_session):
        db_session.add(User(id="user_1", name="Ada Lovelace", email="ada@example.com"))
        db_session.commit()

        actor = registry.load_actor(db_session, "user_1")
        assert actor["name"] == "Ada Lovelace"
        assert actor["email"] == "ada@example.com"

    def test_missing_actor_is_none(self, registry, db_session):
        assert registry.load_actor(db_session, "user_404") is None

    def test_no_actor_loader_registered(self, config, db_session):
        assert EntityRegistry(config).load_actor(db_session, "user_1") is None


class TestFormatting:

    def test_date_and_time(self):
        moment = datetime(2026, 1, 5, 14, 30)
        assert format_date(moment) == "Jan 05, 2026"
        assert format_time(moment) == "02:30 PM"
        assert format_date(None) == ""

    def test_configured_label(self, config):
        assert field_label(config, "sub_total_usd") == "Subtotal (USD)"

    def test_fallback_label(self, config):
        assert field_label(config, "delivery_note") == "Delivery note"

    def test_money_fields_fixed_precision(self, config):
        assert format_value(config, "total_usd", 1234.5) == "1,234.50"
        assert format_value(config, "price_usd", "3") == "3.00"

    def test_unparseable_money_passes_through(self, config):
        assert format_value(config, "total_usd", "n/a") == "n/a"

    def test_datetime_fields(self, config):
        assert format_value(config, "approved_at", datetime(2026, 3, 1, 15, 30)) == "Mar 01, 2026 03:30 PM"
        assert format_value(config, "approved_at", "not a date") == "not a date"

    def test_other_values_pass_through(self, config):
        assert format_value(config, "quantity", 3) == 3
        assert format_value(config, "total_usd", None) is None


class TestTimeAgo:
    now = datetime(2026, 1, 5, 12, 0, 0)

    def test_past(self):
        assert time_ago(self.now - timedelta(minutes=1), self.now) == "1 minute ago"
        assert time_ago(self.now - timedelta(hours=5), self.now) == "5 hours ago"
        assert time_ago(self.now - timedelta(days=15), self.now) == "2 weeks ago"
        assert time_ago(self.now - timedelta(days=400), self.now) == "1 year ago"

    def test_future_and_now(self):
        assert time_ago(self.now + timedelta(days=2), self.now) == "2 days from now"
        assert time_ago(self.now, self.now) == "just now"
