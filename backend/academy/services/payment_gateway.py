"""
Payment Gateway — card charges, refunds and stored payment methods.

No real processor is wired in: SimulatedPaymentGateway follows the sandbox
rules of a typical card gateway so the enrollment flow and the admin refund
path can be exercised end to end.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from academy.schemas.domain import CardDetails, Course, Enrollment, PaymentToken
from academy.utils.validators import card_brand, validate_card_number, validate_expiry

logger = logging.getLogger(__name__)


class ProcessPaymentOptions(BaseModel):
    customer_id: Optional[str] = None
    save_payment_method: bool = False


class PaymentResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    token_id: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None


class PaymentGateway(ABC):
    """Contract the enrollment flow and admin refunds depend on."""

    @abstractmethod
    async def process_payment(
        self,
        enrollment: Enrollment,
        course: Course,
        card: Optional[CardDetails] = None,
        token_id: Optional[str] = None,
        options: Optional[ProcessPaymentOptions] = None,
    ) -> PaymentResult:
        """Charge the enrollment amount with a card or a stored token.

        Declines are reported in the result; GatewayError is reserved for
        transport failures.
        """

    @abstractmethod
    async def refund_payment(self, transaction_id: str, amount: Decimal) -> RefundResult:
        """Refund ``amount`` of a captured transaction."""

    @abstractmethod
    async def list_stored_payment_methods(self, customer_id: str) -> List[PaymentToken]:
        """Tokens saved for a customer (the parent id)."""


class SimulatedPaymentGateway(PaymentGateway):
    """Sandbox gateway.

    Rules:
        - card numbers must pass Luhn and not be expired
        - DECLINED_CARDS always decline, as issuer test cards do
        - refunds require a known or ``tx_`` transaction and a positive amount
          not exceeding what was captured; external ``tx_`` charges refund once
    """

    DECLINED_CARDS = {
        "4000000000000002": "Card declined",
        "4000000000009995": "Insufficient funds",
    }

    def __init__(self, latency: float = 0.0):
        self._latency = latency
        self._tokens: Dict[str, PaymentToken] = {}
        self._captured: Dict[str, Decimal] = {}
        self._refunded: Dict[str, Decimal] = {}

    async def process_payment(
        self,
        enrollment: Enrollment,
        course: Course,
        card: Optional[CardDetails] = None,
        token_id: Optional[str] = None,
        options: Optional[ProcessPaymentOptions] = None,
    ) -> PaymentResult:
        options = options or ProcessPaymentOptions()
        await self._simulate_network()

        if token_id:
            token = self._tokens.get(token_id)
            if token is None or (options.customer_id and token.customer_id != options.customer_id):
                return PaymentResult(success=False, error="Stored payment method not found")
        elif card is not None:
            declined = self._check_card(card)
            if declined:
                return PaymentResult(success=False, error=declined)
        else:
            return PaymentResult(success=False, error="No payment method provided")

        amount = enrollment.payment_details.amount
        transaction_id = f"tx_{uuid.uuid4().hex[:16]}"
        self._captured[transaction_id] = amount
        logger.info(
            "Charged %s %s for enrollment %s (%s) -> %s",
            amount, enrollment.payment_details.currency, enrollment.id, course.title, transaction_id,
        )

        if card is not None and options.save_payment_method and options.customer_id:
            token = self._tokenize(card, options.customer_id)
            token_id = token.id

        if token_id:
            self._tokens[token_id] = self._tokens[token_id].model_copy(update={"in_use": True})

        return PaymentResult(success=True, transaction_id=transaction_id, token_id=token_id)

    async def refund_payment(self, transaction_id: str, amount: Decimal) -> RefundResult:
        await self._simulate_network()

        if not transaction_id:
            return RefundResult(success=False, error="Missing transaction ID",
                                details="Transaction ID is required for refund")
        if amount is None or amount <= 0:
            return RefundResult(success=False, error="Invalid amount",
                                details="Refund amount must be greater than 0")

        captured = self._captured.get(transaction_id)
        if captured is None:
            if not transaction_id.startswith("tx_"):
                return RefundResult(success=False, error="Unknown transaction")
            # External charges are refunded in full, once
            if transaction_id in self._refunded:
                return RefundResult(success=False, error="Transaction already refunded")
            self._refunded[transaction_id] = amount
        else:
            already = self._refunded.get(transaction_id, Decimal("0"))
            if already + amount > captured:
                return RefundResult(success=False, error="Refund exceeds captured amount")
            self._refunded[transaction_id] = already + amount

        refund_id = f"ref_{uuid.uuid4().hex[:16]}"
        logger.info("Refunded %s on %s -> %s", amount, transaction_id, refund_id)
        return RefundResult(success=True, refund_id=refund_id)

    async def list_stored_payment_methods(self, customer_id: str) -> List[PaymentToken]:
        return [t.model_copy() for t in self._tokens.values() if t.customer_id == customer_id]

    def _check_card(self, card: CardDetails) -> Optional[str]:
        number = card.card_number.replace(" ", "")
        if not validate_card_number(number):
            return "Invalid card number"
        if not validate_expiry(card.expiry_month, card.expiry_year):
            return "Card expired"
        return self.DECLINED_CARDS.get(number)

    def _tokenize(self, card: CardDetails, customer_id: str) -> PaymentToken:
        token = PaymentToken(
            id=f"tok_{uuid.uuid4().hex[:16]}",
            customer_id=customer_id,
            last4=card.last4,
            expiry_month=card.expiry_month.zfill(2),
            expiry_year=card.expiry_year[-2:],
            brand=card_brand(card.card_number),
        )
        self._tokens[token.id] = token
        logger.info("Stored payment method %s for customer %s", token.id, customer_id)
        return token

    async def _simulate_network(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)
