"""Subject lines and bodies for the transactional emails.

Bodies are plain HTML. User-supplied values are escaped.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape

from mailqueue.core.email_jobs.payloads import (
    OrderEmailPayload,
    OrderSnapshot,
    PasswordResetPayload,
    WelcomePayload,
)


@dataclass(frozen=True)
class RenderedEmail:
    address: str
    subject: str
    body: str


def _money(value: float) -> str:
    return f"Rs. {value:,.2f}"


def _items_html(order: OrderSnapshot) -> str:
    rows = "".join(
        f"<li>{escape(item.name)} - Quantity: {item.quantity} - Price: {_money(item.price)}</li>"
        for item in order.items
    )
    return f"<ul>{rows}</ul>" if rows else ""


def _address_html(order: OrderSnapshot) -> str:
    addr = order.shipping_address or {}
    if not addr:
        return ""
    name = " ".join(str(addr.get(k, "")) for k in ("first_name", "last_name")).strip()
    lines = [
        name,
        str(addr.get("address", "")),
        " ".join(str(addr.get(k, "")) for k in ("city", "state", "zip_code")).strip(),
        str(addr.get("country", "")),
    ]
    return "<br>".join(escape(line) for line in lines if line)


def render_order_confirmation(payload: OrderEmailPayload, store_name: str) -> RenderedEmail:
    order = payload.order
    parts = [
        "<h2>Order Confirmation</h2>",
        f"<p><strong>Order Number:</strong> {escape(order.order_number)}</p>",
    ]
    if order.created_at is not None:
        parts.append(f"<p><strong>Order Date:</strong> {order.created_at:%Y-%m-%d}</p>")
    parts.append(f"<p><strong>Total Amount:</strong> {_money(order.total)}</p>")
    if order.payment_method:
        parts.append(f"<p><strong>Payment Method:</strong> {escape(order.payment_method.upper())}</p>")
    parts.append(_items_html(order))
    address = _address_html(order)
    if address:
        parts.append(f"<h3>Shipping Address</h3><p>{address}</p>")
    parts.append(f"<p>Thank you for shopping with {escape(store_name)}!</p>")
    return RenderedEmail(
        address=payload.user_email,
        subject=f"Order Confirmation - {order.order_number}",
        body="\n".join(p for p in parts if p),
    )


def render_order_status_update(payload: OrderEmailPayload, store_name: str) -> RenderedEmail:
    order = payload.order
    body = "\n".join([
        "<h2>Order Update</h2>",
        f"<p>Your order <strong>{escape(order.order_number)}</strong> is now "
        f"<strong>{escape(order.status)}</strong>.</p>",
        f"<p><strong>Total Amount:</strong> {_money(order.total)}</p>",
        f"<p>Thank you for shopping with {escape(store_name)}.</p>",
    ])
    return RenderedEmail(
        address=payload.user_email,
        subject=f"Order Update - {order.order_number} is {order.status}",
        body=body,
    )


def render_refund_confirmation(payload: OrderEmailPayload, store_name: str) -> RenderedEmail:
    order = payload.order
    body = "\n".join([
        "<h2>Refund Processed</h2>",
        f"<p>We have processed a refund of <strong>{_money(order.total)}</strong> "
        f"for order <strong>{escape(order.order_number)}</strong>.</p>",
        "<p>Depending on your payment provider it may take a few business days to appear.</p>",
        f"<p>The {escape(store_name)} team</p>",
    ])
    return RenderedEmail(
        address=payload.user_email,
        subject=f"Refund Processed - {order.order_number}",
        body=body,
    )


def reset_link(frontend_url: str, reset_token: str) -> str:
    return f"{frontend_url.rstrip('/')}/reset-password/{reset_token}"


def render_password_reset(
    payload: PasswordResetPayload,
    store_name: str,
    frontend_url: str,
) -> RenderedEmail:
    link = reset_link(frontend_url, payload.reset_token)
    body = "\n".join([
        "<h2>Password Reset Request</h2>",
        "<p>We received a request to reset your password. Use the link below to choose a new one:</p>",
        f'<p><a href="{escape(link, quote=True)}">{escape(link)}</a></p>',
        "<p>If you did not request this, you can ignore this email.</p>",
    ])
    return RenderedEmail(
        address=payload.email,
        subject=f"Password Reset Request - {store_name}",
        body=body,
    )


def render_welcome(payload: WelcomePayload, store_name: str, frontend_url: str) -> RenderedEmail:
    body = "\n".join([
        f"<h2>Welcome, {escape(payload.name)}!</h2>",
        f"<p>Thanks for creating an account at {escape(store_name)}.</p>",
        f'<p><a href="{escape(frontend_url, quote=True)}">Start shopping</a></p>',
    ])
    return RenderedEmail(
        address=payload.email,
        subject=f"Welcome to {store_name}!",
        body=body,
    )
