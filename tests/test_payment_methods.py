"""
Unit tests for stored payment methods.
"""
import uuid
from typing import Optional

import pytest

from conftest import FakeProvider
from payment_service.core.orchestrator import PaymentOrchestrator
from payment_service.database.memory_ledger import InMemoryLedgerStore
from payment_service.domain.models import CallContext, MethodDetails, SaveMethodRequest
from payment_service.domain.results import ErrorCode, ProviderMethodResult


def save_request(
    token: str, is_default: bool = False, customer_id: str = "cust_1", **kwargs: Optional[str]
) -> SaveMethodRequest:
    return SaveMethodRequest(
        customer_id=customer_id,
        is_default=is_default,
        method_details=MethodDetails(token=token),
        **kwargs,
    )


class TestSavePaymentMethod:
    """Test suite for saving payment methods."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_save_stores_display_data(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        ctx: CallContext,
    ) -> None:
        result = await orchestrator.save_payment_method(save_request("pm_1"), ctx)

        assert result.is_success
        assert result.provider == "fake"
        assert result.provider_token_id == "pm_1"
        assert result.last4 == "4242"

        stored = ledger.methods[uuid.UUID(result.payment_method_id)]
        assert stored.display_name == "Visa ending in 4242"
        assert stored.metadata["correlation_id"] == "corr-test-1"
        assert ledger.outbox[-1].event_type == "payment_method.saved"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_explicit_display_name_is_kept(
        self, orchestrator: PaymentOrchestrator, ledger: InMemoryLedgerStore, ctx: CallContext
    ) -> None:
        result = await orchestrator.save_payment_method(
            save_request("pm_1", display_name="Work card"), ctx
        )
        assert ledger.methods[uuid.UUID(result.payment_method_id)].display_name == "Work card"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_new_default_replaces_old_default(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        first = await orchestrator.save_payment_method(save_request("pm_1", is_default=True), ctx)
        second = await orchestrator.save_payment_method(save_request("pm_2", is_default=True), ctx)
        await orchestrator.save_payment_method(save_request("pm_3"), ctx)

        methods = await orchestrator.list_payment_methods("cust_1")
        defaults = [m for m in methods if m.is_default]
        assert len(defaults) == 1
        assert str(defaults[0].id) == second.payment_method_id
        # Default first in listings.
        assert str(methods[0].id) == second.payment_method_id
        assert first.payment_method_id in {str(m.id) for m in methods}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_defaults_are_per_customer(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        await orchestrator.save_payment_method(save_request("pm_a", True, "cust_a"), ctx)
        await orchestrator.save_payment_method(save_request("pm_b", True, "cust_b"), ctx)

        for customer in ("cust_a", "cust_b"):
            (method,) = await orchestrator.list_payment_methods(customer)
            assert method.is_default

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_token(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        await orchestrator.save_payment_method(save_request("pm_1"), ctx)
        again = await orchestrator.save_payment_method(save_request("pm_1"), ctx)
        assert again.error_code == ErrorCode.DUPLICATE_PAYMENT_METHOD
        assert again.error_message == "Payment method already saved"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_customer_id_required(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        result = await orchestrator.save_payment_method(save_request("pm_1", customer_id=""), ctx)
        assert result.error_code == ErrorCode.INVALID_REQUEST
        assert result.error_message == "Customer ID is required"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_provider_refusal_is_returned_verbatim(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        fake_provider: FakeProvider,
        ctx: CallContext,
    ) -> None:
        fake_provider.method_outcome = ProviderMethodResult.unsupported(
            "Saving methods is not supported"
        )
        result = await orchestrator.save_payment_method(save_request("pm_1"), ctx)
        assert result.error_code == ErrorCode.PROVIDER_DECLINED
        assert result.error_message == "Saving methods is not supported"
        assert ledger.methods == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_provider(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        result = await orchestrator.save_payment_method(
            save_request("pm_1", provider="square"), ctx
        )
        assert result.error_code == ErrorCode.UNSUPPORTED_PROVIDER


class TestDeletePaymentMethod:
    """Test suite for deleting payment methods."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_revokes_and_removes(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        fake_provider: FakeProvider,
        ctx: CallContext,
    ) -> None:
        saved = await orchestrator.save_payment_method(save_request("pm_1"), ctx)

        assert await orchestrator.delete_payment_method(saved.payment_method_id, ctx)
        assert fake_provider.deleted_tokens == ["pm_1"]
        assert ledger.methods == {}
        assert ledger.outbox[-1].event_type == "payment_method.deleted"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_local_row_removed_when_revoke_is_refused(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        fake_provider: FakeProvider,
        ctx: CallContext,
    ) -> None:
        saved = await orchestrator.save_payment_method(save_request("pm_1"), ctx)
        fake_provider.delete_result = False

        assert await orchestrator.delete_payment_method(saved.payment_method_id, ctx)
        assert ledger.methods == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_local_row_removed_when_revoke_raises(
        self,
        orchestrator: PaymentOrchestrator,
        ledger: InMemoryLedgerStore,
        fake_provider: FakeProvider,
        ctx: CallContext,
    ) -> None:
        saved = await orchestrator.save_payment_method(save_request("pm_1"), ctx)
        fake_provider.delete_error = RuntimeError("provider down")

        assert await orchestrator.delete_payment_method(saved.payment_method_id, ctx)
        assert ledger.methods == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_unknown_method(
        self, orchestrator: PaymentOrchestrator, ctx: CallContext
    ) -> None:
        assert not await orchestrator.delete_payment_method(str(uuid.uuid4()), ctx)
        assert not await orchestrator.delete_payment_method("not-a-uuid", ctx)
