"""Tests for the WhatsAppConnection and OwnerProfile models."""

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from linkconsole.db.models import OwnerProfile, WhatsAppConnection


class TestWhatsAppConnectionModel:

    def test_defaults(self, db_session):
        """id, type, channel, status and timestamps are auto-populated."""
        conn = WhatsAppConnection(owner_id="owner-1", name="vendas")
        db_session.add(conn)
        db_session.commit()
        assert conn.id is not None
        assert conn.type == "whatsapp"
        assert conn.channel == "whatsapp"
        assert conn.status == "inactive"
        assert conn.created_at is not None
        assert conn.updated_at is not None

    def test_unique_name_constraint(self, db_session):
        db_session.add(WhatsAppConnection(owner_id="owner-1", name="vendas"))
        db_session.commit()
        db_session.add(WhatsAppConnection(owner_id="owner-2", name="vendas"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_configuration_round_trips_through_json_column(self, db_session):
        conn = WhatsAppConnection(owner_id="owner-1", name="vendas")
        conn.configuration = {"instance_name": "vendas", "connection_status": "qr_code"}
        db_session.add(conn)
        db_session.commit()
        assert conn.configuration_json == (
            '{"connection_status": "qr_code", "instance_name": "vendas"}'
        )
        assert conn.configuration["instance_name"] == "vendas"

    @pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]"])
    def test_corrupt_configuration_reads_empty(self, raw):
        conn = WhatsAppConnection(owner_id="owner-1", name="vendas", configuration_json=raw)
        assert conn.configuration == {}

    def test_owner_index_exists(self, db_engine):
        indexes = {ix["name"] for ix in inspect(db_engine).get_indexes("connections")}
        assert {"idx_connections_owner", "idx_connections_created"} <= indexes


class TestOwnerProfileModel:

    def test_unique_owner_id(self, db_session):
        db_session.add(OwnerProfile(owner_id="owner-1"))
        db_session.commit()
        db_session.add(OwnerProfile(owner_id="owner-1"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_inactive_by_default(self, db_session):
        owner = OwnerProfile(owner_id="owner-1")
        db_session.add(owner)
        db_session.commit()
        assert owner.is_active is False
        assert owner.role == "user"
