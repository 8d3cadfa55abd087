"""
examples/local_sellers.py — In-process sellers for the demos.

Each seller answers the standard endpoints through an httpx.MockTransport,
signs its receipts with its own key, and can be told to sign with a
foreign key instead (to demonstrate a dispute).
"""

import json
import time

import httpx
from eth_account import Account
from web3 import Web3

from hunter_settlement import ServiceInfo, calculate_request_hash, sign_receipt
from hunter_settlement.models import ReputationSummary, ReputationTrend

NETWORK = "eip155:10143"


class LocalSeller:
    def __init__(self, service_id, price_wei, task_type, reputation=None, dishonest=False):
        self.account = Account.create()
        self.service_id = service_id
        self.price_wei = price_wei
        self.task_type = task_type
        self.reputation = reputation
        self.dishonest = dishonest
        self.host = f"{service_id}.local"

    @property
    def service(self) -> ServiceInfo:
        return ServiceInfo(
            id=self.service_id,
            network=NETWORK,
            provider=self.account.address,
            endpoint=f"http://{self.host}",
            price=self.price_wei,
            task_type=self.task_type,
            name=self.service_id,
            reputation=self.reputation,
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/identity":
            return httpx.Response(200, json={"identity": {"agentId": f"10143:{self.service_id}"}})
        if request.url.path == "/reputation":
            return httpx.Response(200, json={"average": 60})

        body = json.loads(request.content)
        timestamp = body.get("timestamp") or int(time.time())
        request_hash = calculate_request_hash(self.task_type, body["taskInput"], timestamp, self.account.address)
        if "paymentTx" not in body:
            return httpx.Response(402, json={
                "x402Version": 2,
                "accepts": [{
                    "scheme": "native-transfer",
                    "network": NETWORK,
                    "amount": str(self.price_wei),
                    "payTo": self.account.address,
                    "maxTimeoutSeconds": 60,
                    "asset": "native",
                }],
                "paymentContext": {"requestHash": request_hash, "taskType": self.task_type, "timestamp": timestamp},
            })

        result = f"[{self.service_id}] Delivered work for: {body['taskInput'][:200]}\n" + "Detail line.\n" * 60
        key = Web3.to_hex(Account.create().key) if self.dishonest else Web3.to_hex(self.account.key)
        receipt = sign_receipt(key, request_hash, result, timestamp).to_dict()
        receipt["provider"] = self.account.address
        return httpx.Response(200, json={
            "result": result,
            "receipt": receipt,
            "payment": {"status": "settled", "transaction": body["paymentTx"], "network": NETWORK},
        })


def default_sellers(dishonest_id=None):
    return [
        LocalSeller(
            "writer-pro", 12 * 10**15, "content-generation",
            reputation=ReputationSummary(4.3, ReputationTrend.UP, 40),
            dishonest=dishonest_id == "writer-pro",
        ),
        LocalSeller(
            "writer-budget", 4 * 10**15, "content-generation",
            dishonest=dishonest_id == "writer-budget",
        ),
        LocalSeller(
            "yield-scout", 9 * 10**15, "defi-analysis",
            reputation=ReputationSummary(3.1, ReputationTrend.FLAT, 2),
            dishonest=dishonest_id == "yield-scout",
        ),
    ]


def http_client_for(sellers) -> httpx.AsyncClient:
    by_host = {s.host: s for s in sellers}

    def route(request: httpx.Request) -> httpx.Response:
        seller = by_host.get(request.url.host)
        if seller is None:
            return httpx.Response(404, json={"message": f"unknown host {request.url.host}"})
        return seller.handle(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(route))
