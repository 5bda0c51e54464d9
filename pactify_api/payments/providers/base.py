from abc import ABC, abstractmethod


class PaymentProviderError(Exception):
    """
    Raised by providers when the processor rejects a call or cannot be reached.

    ``message`` is the processor's own message and is passed through to API callers.
    """

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class BasePaymentProvider(ABC):
    """
    Abstract base class for all payment providers.
    Defines the capability interface the escrow, KYC and withdrawal flows rely on.
    Amounts handed to a provider are integer minor units (cents).
    """

    name = None

    def __init__(self, **kwargs):
        """Initialize the payment provider with configuration."""
        self.config = kwargs

    @abstractmethod
    def create_funding_session(self, *, amount_minor, currency, line_items, metadata,
                               customer_email=None, success_url=None, cancel_url=None):
        """
        Open a hosted checkout session charging the client.

        Args:
            amount_minor: Total to charge, in minor units
            currency: ISO currency code
            line_items: List of dicts with 'name', 'description' and 'amount_minor'
            metadata: Reconciliation tags (contract id, fee breakdown)

        Returns:
            Dict with 'session_id' and 'url'
        """

    @abstractmethod
    def get_funding_session(self, session_ref):
        """
        Look up a checkout session.

        Returns:
            Dict with 'paid' (bool) and 'payment_reference'
        """

    @abstractmethod
    def expire_funding_session(self, session_ref):
        """
        Close an unpaid checkout session so it can no longer be paid.
        """

    @abstractmethod
    def transfer_funds(self, *, amount_minor, currency, destination, transfer_group, metadata,
                       idempotency_key=None):
        """
        Move funds from the platform balance to a connected account.

        Returns:
            str: the processor's transfer reference
        """

    @abstractmethod
    def refund(self, payment_ref, amount_minor=None, reason=None):
        """
        Refund a captured payment, fully when ``amount_minor`` is None.

        Returns:
            str: the processor's refund reference
        """

    @abstractmethod
    def get_connected_account_status(self, account_ref):
        """
        Retrieve live verification state of a connected account.

        Returns:
            Dict with transfers_active, payouts_enabled, charges_enabled, details_submitted,
            requirements_currently_due, requirements_past_due, requirements_eventually_due,
            disabled_reason
        """

    @abstractmethod
    def create_connected_account(self, user):
        """
        Register a payout account for ``user``.

        Returns:
            str: the external account id
        """

    @abstractmethod
    def get_account_link(self, account_ref, refresh_url, return_url):
        """
        Create a hosted onboarding link for a connected account.

        Returns:
            Dict with 'url' and 'expires_at'
        """

    @abstractmethod
    def create_payout(self, *, amount_minor, currency, account_ref, metadata):
        """
        Pay out a connected account's balance to its external bank account.

        Returns:
            str: the processor's payout reference
        """

    @abstractmethod
    def create_subscription_session(self, *, price_ref, customer_email, metadata, success_url=None, cancel_url=None):
        """
        Open a hosted checkout session that starts a recurring plan subscription.

        Args:
            price_ref: The processor's recurring price id for the plan
            metadata: Copied onto the subscription (carries the user id)

        Returns:
            Dict with 'session_id' and 'url'
        """

    @abstractmethod
    def get_subscription(self, subscription_ref):
        """
        Retrieve live subscription state.

        Returns:
            Dict with subscription_id, status, price_ref, item_ref, customer_ref, user_id,
            cancel_at_period_end, current_period_end (unix seconds or None)
        """

    @abstractmethod
    def change_subscription_price(self, subscription_ref, item_ref, price_ref):
        """Move a subscription to another plan price, prorated."""

    @abstractmethod
    def cancel_subscription(self, subscription_ref):
        """Stop renewal; the plan stays active until the end of the paid period."""

    def construct_webhook_event(self, payload, signature):
        """
        Verify a webhook signature and parse the event.

        Args:
            payload: Raw webhook payload (bytes)
            signature: Webhook signature header

        Returns:
            Dict with 'id', 'type' and 'object_id'
        """
        raise PaymentProviderError(f"{self.name} does not support webhooks")
