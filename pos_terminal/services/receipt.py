from datetime import datetime
from decimal import Decimal

from pos_terminal.core.schemas import SaleRecord

RULE = "-" * 32


def _amount(value: Decimal, currency: str) -> str:
    return f"{currency} {value:,.2f}"


def _when(created_at):
    if not created_at:
        return "-"
    try:
        return datetime.fromisoformat(created_at.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return created_at


def render_receipt_text(sale: SaleRecord, currency: str = "NGN") -> str:
    """Plain-text receipt, the copy-to-clipboard layout of the cashier screen."""
    lines = [
        f"Receipt: {sale.sale_number or sale.id}",
        f"Shop: {sale.shop_name or '-'}",
        f"Date: {_when(sale.created_at)}",
    ]
    if sale.customer_name:
        lines.append(f"Customer: {sale.customer_name}")
    lines.append(RULE)
    for item in sale.items:
        lines.append(f"{item.product_name} x{item.quantity} - {_amount(item.total_price, currency)}")
    lines.append(RULE)
    if sale.discount:
        lines.append(f"Discount: -{_amount(sale.discount, currency)}")
    lines.append(f"Total: {_amount(sale.total, currency)}")
    if sale.payment_method:
        lines.append(f"Paid by: {sale.payment_method}")
    return "\n".join(lines)
