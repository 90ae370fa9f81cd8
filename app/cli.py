# app/cli.py
"""
Lens402 command-line client.

Performs the x402 handshake against a Lens402 server:
1. Request without proof -> 402 challenge with payment instructions
2. Obtain a proof (--payment-hash or an interactive prompt)
3. Retry with the X-Payment-Hash header

Usage:
    lens402 [--api-url URL] info
    lens402 transfers --address 0x... [--payment-hash 0x...]
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, Optional

import click
import requests
from rich.console import Console
from rich.table import Table

from app.x402.models import X_PAYMENT_HASH_HEADER

console = Console()

DEFAULT_API_URL = "http://localhost:8000"

# What a client can do about each rejection reason
REJECTION_HINTS = {
    "not_found": "Check the transaction hash and the network, or wait for the transaction to be indexed.",
    "pending": "The transaction is not confirmed yet. Wait a few seconds and retry with the same hash.",
    "wrong_recipient": "The payment went to another address or used another token. Send a new payment as instructed.",
    "insufficient_amount": "The payment is below the price. Send a new payment for the full amount.",
    "transaction_failed": "The transaction reverted on-chain. Send a new payment.",
    "bypass_not_allowed": "The demo token only works against servers running in development mode.",
    "ledger_unavailable": "The server cannot reach the ledger right now. Retry later with the same hash.",
}


class APIError(Exception):
    """Non-protocol HTTP error from the server."""

    def __init__(self, status_code: int, message: str, body: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.message = message
        self.body = body or {}
        super().__init__(f"[{status_code}] {message}")


class PaymentRejected(APIError):
    """The server checked the proof and refused it."""

    @property
    def reason(self) -> str:
        return self.body.get("reason", "unknown")

    @property
    def retryable(self) -> bool:
        return bool(self.body.get("retryable"))


def is_challenge(body: Dict[str, Any]) -> bool:
    """A 402 without a rejection reason is the payment challenge."""
    return "recipientAddress" in body and "reason" not in body


class Lens402Client:
    """HTTP client for a Lens402 server."""

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, path: str, params: Optional[Dict] = None, proof: Optional[str] = None) -> requests.Response:
        headers = {X_PAYMENT_HASH_HEADER: proof} if proof else {}
        return self.session.get(f"{self.base_url}{path}", params=params, headers=headers, timeout=self.timeout)

    @staticmethod
    def _body(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"message": response.text or "Unknown error"}
        return body if isinstance(body, dict) else {"data": body}

    def _raise_for_error(self, response: requests.Response) -> Dict[str, Any]:
        body = self._body(response)
        if response.status_code < 400:
            return body
        message = body.get("message") or body.get("detail") or "Unknown error"
        if "reason" in body:
            raise PaymentRejected(response.status_code, message, body)
        raise APIError(response.status_code, message, body)

    def info(self) -> Dict[str, Any]:
        return self._raise_for_error(self._get("/api/transfers/info"))

    def transfers(
        self,
        params: Dict[str, Any],
        obtain_proof: Callable[[Dict[str, Any]], Optional[str]],
    ) -> Dict[str, Any]:
        """
        Fetch transfers, paying when challenged.

        Args:
            params: Query parameters
            obtain_proof: Called with the 402 challenge; returns a transaction
                hash, or None to give up

        Raises:
            PaymentRejected: if the server refused the proof
            APIError: for any other error response or an abandoned challenge
        """
        response = self._get("/api/transfers", params=params)
        if response.status_code != 402:
            return self._raise_for_error(response)

        challenge = self._body(response)
        if not is_challenge(challenge):
            return self._raise_for_error(response)

        proof = obtain_proof(challenge)
        if not proof:
            raise APIError(402, "Payment required, no proof supplied", challenge)

        return self._raise_for_error(self._get("/api/transfers", params=params, proof=proof))


def render_challenge(challenge: Dict[str, Any]) -> None:
    console.print("\n[bold yellow]402 Payment Required[/bold yellow]\n")
    console.print(f"Amount:    [cyan]{challenge.get('amount')} {challenge.get('currency', '')}[/cyan]")
    console.print(f"Network:   [cyan]{challenge.get('network')}[/cyan]")
    console.print(f"Recipient: [cyan]{challenge.get('recipientAddress')}[/cyan]")
    if challenge.get("tokenContract"):
        console.print(f"Token:     [cyan]{challenge.get('tokenContract')}[/cyan]")
    if challenge.get("instructions"):
        console.print(f"\n{challenge['instructions']}\n")


def render_transfers(result: Dict[str, Any]) -> None:
    transfers = (result.get("data") or {}).get("transfers", [])

    table = Table(title="Transfers")
    table.add_column("Block")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Value", justify="right")
    table.add_column("Asset")
    table.add_column("Hash")
    for t in transfers:
        table.add_row(
            str(t.get("blockNum", "")),
            str(t.get("from", "")),
            str(t.get("to", "")),
            str(t.get("value", "")),
            str(t.get("asset", "")),
            str(t.get("hash", "")),
        )
    console.print(table)

    payment = result.get("payment") or {}
    console.print(f"Payment: [green]{payment.get('hash')}[/green] ({payment.get('amount')})")

    pagination = result.get("pagination") or {}
    if pagination.get("hasMore"):
        console.print(f"More results: rerun with [cyan]--page-key {pagination.get('pageKey')}[/cyan]")


def render_error(error: APIError) -> None:
    if isinstance(error, PaymentRejected):
        console.print(f"[red]Payment rejected ({error.reason}): {error.message}[/red]")
        hint = REJECTION_HINTS.get(error.reason)
        if hint:
            console.print(f"[yellow]{hint}[/yellow]")
        return
    console.print(f"[red]Error {error.status_code}: {error.message}[/red]")
    if error.body.get("example"):
        console.print(f"Example: {error.body['example']}")
    if error.body.get("retryable"):
        console.print("[yellow]This error is temporary, retry shortly.[/yellow]")


@click.group()
@click.option("--api-url", envvar="LENS402_API_URL", default=DEFAULT_API_URL, show_default=True, help="Server base URL")
@click.option("--timeout", default=30.0, type=float, help="Request timeout in seconds")
@click.pass_context
def cli(ctx, api_url: str, timeout: float):
    """Lens402 - pay-per-request blockchain transfer history."""
    ctx.ensure_object(dict)
    ctx.obj["client"] = Lens402Client(api_url, timeout=timeout)


@cli.command()
@click.pass_context
def info(ctx):
    """Show the price and accepted parameters."""
    client: Lens402Client = ctx.obj["client"]
    try:
        result = client.info()
    except APIError as e:
        render_error(e)
        ctx.exit(1)
    except requests.RequestException as e:
        console.print(f"[red]Could not reach server: {e}[/red]")
        ctx.exit(1)

    console.print_json(json.dumps(result))


@cli.command()
@click.option("--address", help="Wallet address (either direction)")
@click.option("--from-address", help="Sender address filter")
@click.option("--to-address", help="Recipient address filter")
@click.option("--category", help="Comma-separated transfer categories")
@click.option("--contract", "contract_addresses", help="Comma-separated token contracts")
@click.option("--from-block", help="Start block")
@click.option("--to-block", help="End block")
@click.option("--max-count", type=int, help="Results per page (1-1000)")
@click.option("--page-key", help="Pagination key from a previous response")
@click.option("--order", type=click.Choice(["asc", "desc"]), help="Sort order")
@click.option("--payment-hash", envvar="LENS402_PAYMENT_HASH", help="Transaction hash of your payment")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON response")
@click.pass_context
def transfers(
    ctx,
    address, from_address, to_address, category, contract_addresses,
    from_block, to_block, max_count, page_key, order,
    payment_hash: Optional[str],
    as_json: bool,
):
    """Fetch transfer history, paying via x402 when challenged."""
    client: Lens402Client = ctx.obj["client"]
    params = {
        "address": address,
        "fromAddress": from_address,
        "toAddress": to_address,
        "category": category,
        "contractAddresses": contract_addresses,
        "fromBlock": from_block,
        "toBlock": to_block,
        "maxCount": max_count,
        "pageKey": page_key,
        "order": order,
    }
    params = {k: v for k, v in params.items() if v is not None}

    def obtain_proof(challenge: Dict[str, Any]) -> Optional[str]:
        render_challenge(challenge)
        if payment_hash:
            console.print(f"Retrying with payment [cyan]{payment_hash}[/cyan]")
            return payment_hash
        entered = click.prompt("Transaction hash of your payment (empty to cancel)", default="", show_default=False)
        return entered.strip() or None

    try:
        result = client.transfers(params, obtain_proof)
    except APIError as e:
        render_error(e)
        ctx.exit(1)
    except requests.RequestException as e:
        console.print(f"[red]Could not reach server: {e}[/red]")
        ctx.exit(1)

    if as_json:
        console.print_json(json.dumps(result))
    else:
        render_transfers(result)


if __name__ == "__main__":
    cli()
