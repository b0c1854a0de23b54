"""
Notification Service for Falko.

Handles transactional email via SendGrid for:
- Return confirmation (label / QR code and refund summary)
- Return processed (refund issued, points added)
- Points earned on a completed order

Notifications are best-effort: every public method returns a
{'success': bool, 'error': str} dict and never raises, so a failed email can
never roll back a return or a ledger entry.

Configuration:
- SENDGRID_API_KEY: SendGrid API key (unset = emails skipped)
- SENDGRID_FROM_EMAIL / SENDGRID_FROM_NAME: sender identity
- STORE_NAME: shown in email bodies
"""
import logging
from typing import Optional, Dict, Any

from markupsafe import escape
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

logger = logging.getLogger(__name__)


def format_amount(minor_units: int) -> str:
    """5000 -> '50.00 zł'"""
    return f"{(minor_units or 0) / 100:.2f} zł"


REFUND_METHOD_LABELS = {
    'loyalty_points': 'Punkty lojalnościowe (+10% bonus)',
    'card': 'Zwrot na kartę',
}


class NotificationService:
    """
    Sends customer emails through SendGrid.

    Usage:
        notifications = NotificationService.from_config(app.config)
        notifications.send_return_confirmation(return_request, email='jan@example.com')
    """

    TEMPLATES = {
        'return_confirmation': {
            'subject': 'Zwrot zgłoszony - zamówienie #{order_number}',
            'text': '''Cześć {customer_name},

Twój zwrot {return_id} został zarejestrowany.

Produkty:
{items}

Metoda zwrotu: {refund_method}
Kwota zwrotu: {refund_amount}

Kod QR nadania: {qr_code_url}
Numer przesyłki: {tracking_number}

Zapakuj produkty, pokaż kod QR w punkcie nadania i nadaj paczkę.

{store_name}
''',
            'html': '''
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Zwrot zgłoszony</h2>
    <p>Cześć {customer_name},</p>
    <p>Twój zwrot <strong>{return_id}</strong> został zarejestrowany.</p>
    <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <pre style="font-family: inherit;">{items}</pre>
        <p><strong>Metoda zwrotu:</strong> {refund_method}</p>
        <p><strong>Kwota zwrotu:</strong> {refund_amount}</p>
        <p><strong>Numer przesyłki:</strong> {tracking_number}</p>
    </div>
    <p><a href="{qr_code_url}">Pobierz kod QR nadania</a></p>
    <p>{store_name}</p>
</div>
'''
        },
        'return_processed': {
            'subject': 'Zwrot przetworzony - zamówienie #{order_number}',
            'text': '''Cześć {customer_name},

Twój zwrot {return_id} został przetworzony.

Metoda zwrotu: {refund_method}
Kwota zwrotu: {refund_amount}
{points_line}

Dziękujemy!

{store_name}
''',
            'html': '''
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>Zwrot przetworzony</h2>
    <p>Cześć {customer_name},</p>
    <p>Twój zwrot <strong>{return_id}</strong> został przetworzony.</p>
    <div style="background: #e8f5e9; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <p><strong>Metoda zwrotu:</strong> {refund_method}</p>
        <p><strong>Kwota zwrotu:</strong> {refund_amount}</p>
        <p>{points_line}</p>
    </div>
    <p>Dziękujemy!</p>
    <p>{store_name}</p>
</div>
'''
        },
        'points_earned': {
            'subject': 'Zdobyłeś {points} punktów!',
            'text': '''Cześć {customer_name},

Za zamówienie #{order_number} otrzymujesz {points} punktów.

Twoje saldo: {new_balance} pkt

{store_name}
''',
            'html': '''
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2>+{points} punktów</h2>
    <p>Cześć {customer_name},</p>
    <p>Za zamówienie #{order_number} otrzymujesz <strong>{points}</strong> punktów.</p>
    <div style="background: #fff3e0; padding: 20px; border-radius: 8px; margin: 20px 0;">
        <p><strong>Twoje saldo:</strong> {new_balance} pkt</p>
    </div>
    <p>{store_name}</p>
</div>
'''
        },
    }

    def __init__(
        self,
        api_key: str = None,
        from_email: str = 'noreply@falkoproject.com',
        from_name: str = 'Falko Project',
        store_name: str = 'Falko Project',
        client: SendGridAPIClient = None
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.store_name = store_name
        self._client = client

    @classmethod
    def from_config(cls, config) -> 'NotificationService':
        return cls(
            api_key=config.get('SENDGRID_API_KEY'),
            from_email=config.get('SENDGRID_FROM_EMAIL', 'noreply@falkoproject.com'),
            from_name=config.get('SENDGRID_FROM_NAME', 'Falko Project'),
            store_name=config.get('STORE_NAME', 'Falko Project'),
        )

    def _get_client(self) -> Optional[SendGridAPIClient]:
        if self._client is None and self.api_key:
            self._client = SendGridAPIClient(self.api_key)
        return self._client

    def _render_template(self, template_key: str, variables: Dict[str, Any]) -> Dict[str, str]:
        template = self.TEMPLATES[template_key]
        variables = {'store_name': self.store_name, **variables}
        html_variables = {key: escape(value) for key, value in variables.items()}
        return {
            'subject': template['subject'].format(**variables),
            'text': template['text'].format(**variables),
            'html': template['html'].format(**html_variables),
        }

    def _send_email(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        text_content: str,
        html_content: str
    ) -> Dict[str, Any]:
        """Send an email via SendGrid."""
        if not to_email:
            return {'success': False, 'skipped': True, 'error': 'No recipient email'}

        client = self._get_client()
        if not client:
            logger.warning('SendGrid API key not configured, email not sent')
            return {'success': False, 'skipped': True, 'error': 'SendGrid not configured'}

        try:
            message = Mail(
                from_email=Email(self.from_email, self.from_name),
                to_emails=To(to_email, to_name),
                subject=subject,
                plain_text_content=Content("text/plain", text_content),
                html_content=Content("text/html", html_content)
            )

            response = client.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email sent to {to_email}: {subject}")
                return {'success': True, 'status_code': response.status_code}
            else:
                logger.error(f"SendGrid error: {response.status_code}")
                return {'success': False, 'error': f"Status code: {response.status_code}"}

        except Exception as e:
            logger.error(f"Failed to send email: {str(e)}")
            return {'success': False, 'error': str(e)}

    def _send_template(self, template_key: str, to_email: str, to_name: Optional[str], variables: Dict[str, Any]):
        try:
            rendered = self._render_template(template_key, variables)
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to render {template_key} email: {e}")
            return {'success': False, 'error': str(e)}
        return self._send_email(to_email, to_name, rendered['subject'], rendered['text'], rendered['html'])

    # ==================== Public Methods ====================

    def send_return_confirmation(
        self,
        return_request,
        email: str,
        customer_name: str = None,
        order_number: str = None
    ) -> Dict[str, Any]:
        """Email the customer their return label and refund summary."""
        items = '\n'.join(
            f"- {item.get('quantity', 1)}x {item.get('title') or item.get('variant_id')} "
            f"@ {format_amount(item.get('unit_price', 0))}"
            for item in return_request.items or []
        )
        return self._send_template('return_confirmation', email, customer_name, {
            'customer_name': customer_name or 'Kliencie',
            'return_id': return_request.id,
            'order_number': order_number or return_request.order_id,
            'items': items,
            'refund_method': REFUND_METHOD_LABELS.get(return_request.refund_method, return_request.refund_method),
            'refund_amount': format_amount(return_request.refund_amount),
            'qr_code_url': return_request.furgonetka_qr_code or 'w przygotowaniu',
            'tracking_number': return_request.furgonetka_tracking_number or 'w przygotowaniu',
        })

    def send_return_processed(
        self,
        return_request,
        email: str,
        points_added: int = None,
        customer_name: str = None,
        order_number: str = None
    ) -> Dict[str, Any]:
        """Email the customer that their refund has been issued."""
        points_line = f'Dodane punkty: {points_added}' if points_added else ''
        return self._send_template('return_processed', email, customer_name, {
            'customer_name': customer_name or 'Kliencie',
            'return_id': return_request.id,
            'order_number': order_number or return_request.order_id,
            'refund_method': REFUND_METHOD_LABELS.get(return_request.refund_method, return_request.refund_method),
            'refund_amount': format_amount(return_request.refund_amount),
            'points_line': points_line,
        })

    def send_points_earned(
        self,
        email: str,
        points: int,
        new_balance: int,
        order_number: str,
        customer_name: str = None
    ) -> Dict[str, Any]:
        """Email the customer the points awarded for an order."""
        return self._send_template('points_earned', email, customer_name, {
            'customer_name': customer_name or 'Kliencie',
            'points': points,
            'new_balance': new_balance,
            'order_number': order_number,
        })
