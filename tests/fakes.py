"""In-memory stand-ins for the HTTP endpoints and CLIs the demo talks to."""

import json
import subprocess

import requests

from vs_demo.client import LINKED_VP_TYPE

AGENT_DID = "did:webvh:QmAgent:abc123.ngrok-free.app"


class MockResponse:
    def __init__(self, json_data=None, status_code=200, text=None, content=None, headers=None):
        self._json = json_data
        self.status_code = status_code
        if text is None:
            text = json.dumps(json_data) if json_data is not None else ""
        self.text = text
        self.content = content if content is not None else text.encode()
        self.headers = headers or {}

    def json(self):
        if self._json is None:
            return json.loads(self.text)
        return self._json


class FakeSession:
    """Routes (method, url) to a response, a list of responses or a handler.

    Unrouted requests fail like an unreachable host.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def route(self, method, url, target):
        self.routes[(method, url)] = target

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        target = self.routes.get((method, url))
        if target is None:
            raise requests.ConnectionError(f"no route to {method} {url}")
        if isinstance(target, list):
            return target.pop(0) if len(target) > 1 else target[0]
        if callable(target):
            return target(method, url, kwargs)
        return target

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def calls_to(self, url):
        return [c for c in self.calls if c[1] == url]


class FakeClock:
    """Records sleeps instead of sleeping."""

    def __init__(self):
        self.sleeps = []

    def __call__(self, seconds):
        self.sleeps.append(seconds)

    @property
    def elapsed(self):
        return sum(self.sleeps)


class FakeVSAgent:
    """A VS Agent admin API (and public DID document) on a FakeSession."""

    def __init__(self, session, admin_url, public_url=None, did="did:webvh:abc123.ngrok-free.app", wrap=True):
        self.session = session
        self.admin_url = admin_url
        self.public_url = public_url or admin_url
        self.did = did
        self.wrap = wrap
        self.jscs = []
        self.linked = []
        self.credential_types = []
        self.issued = 0
        self.refuse_deletes = set()

        session.route("GET", f"{admin_url}/v1/agent", self._agent)
        session.route("GET", f"{admin_url}/v1/vt/json-schema-credentials", self._list_jscs)
        session.route("POST", f"{admin_url}/v1/vt/json-schema-credentials", self._create_jsc)
        session.route("DELETE", f"{admin_url}/v1/vt/json-schema-credentials", self._delete_jsc)
        session.route("POST", f"{admin_url}/v1/vt/issue-credential", self._issue)
        session.route("POST", f"{admin_url}/v1/vt/linked-credentials", self._link)
        session.route("DELETE", f"{admin_url}/v1/vt/linked-credentials", self._unlink)
        session.route("POST", f"{admin_url}/v1/credential-types", self._credential_type)
        session.route("GET", f"{self.public_url}/.well-known/did.json", self._did_document)

    def add_jsc(self, schema_base_id, schema_id):
        """Register a VTJSC and publish it as `<base>-jsc-vp` in the DID document."""
        jsc_id = f"{self.public_url}/vt/schemas-{schema_base_id}-jsc.json"
        vp_url = f"{self.public_url}/vt/schemas-{schema_base_id}-jsc-vp.json"
        self.jscs.append({
            "schemaBaseId": schema_base_id,
            "schemaId": schema_id,
            "credential": {"id": jsc_id},
        })
        self.session.route("GET", vp_url, MockResponse({
            "type": ["VerifiablePresentation"],
            "verifiableCredential": [{
                "id": jsc_id,
                "type": ["VerifiableCredential", "JsonSchemaCredential"],
                "credentialSubject": {"id": schema_id, "jsonSchema": {"$ref": schema_id}},
            }],
        }))
        return jsc_id

    def _agent(self, method, url, kwargs):
        return MockResponse({"label": "vs-demo", "publicDid": self.did} if self.did else {"label": "vs-demo"})

    def _list_jscs(self, method, url, kwargs):
        return MockResponse({"data": self.jscs})

    def _create_jsc(self, method, url, kwargs):
        body = kwargs["json"]
        jsc_id = self.add_jsc(body["schemaBaseId"], body["jsonSchemaRef"])
        return MockResponse({"id": jsc_id, "schemaId": body["jsonSchemaRef"]}, status_code=201)

    def _delete_jsc(self, method, url, kwargs):
        jsc_id = kwargs["json"]["id"]
        if jsc_id in self.refuse_deletes:
            return MockResponse({"statusCode": 500, "message": "cannot delete"}, status_code=500)
        before = len(self.jscs)
        self.jscs = [e for e in self.jscs if e["credential"]["id"] != jsc_id]
        if len(self.jscs) == before:
            return MockResponse({"statusCode": 404, "message": "not found"}, status_code=404)
        return MockResponse(status_code=204)

    def _issue(self, method, url, kwargs):
        body = kwargs["json"]
        self.issued += 1
        credential = {
            "id": f"urn:uuid:credential-{self.issued}",
            "type": ["VerifiableCredential", "VerifiableTrustCredential"],
            "issuer": self.did,
            "credentialSubject": body["claims"],
            "credentialSchema": {"id": body["jsonSchemaCredentialId"], "type": "JsonSchemaCredential"},
        }
        return MockResponse({"credential": credential} if self.wrap else credential)

    def _link(self, method, url, kwargs):
        self.linked.append(kwargs["json"])
        return MockResponse({})

    def _unlink(self, method, url, kwargs):
        schema_id = kwargs["json"]["credentialSchemaId"]
        self.linked = [
            entry for entry in self.linked
            if entry["credential"].get("credentialSchema", {}).get("id") != schema_id
        ]
        return MockResponse(status_code=200)

    def _credential_type(self, method, url, kwargs):
        self.credential_types.append(kwargs["json"])
        return MockResponse({"id": f"did:webvh:abc123:cred-def-{len(self.credential_types)}"})

    def _did_document(self, method, url, kwargs):
        services = [
            {
                "id": f"{self.did}#vpr-schemas-{e['schemaBaseId']}-jsc-vp",
                "type": LINKED_VP_TYPE,
                "serviceEndpoint": f"{self.public_url}/vt/schemas-{e['schemaBaseId']}-jsc-vp.json",
            }
            for e in self.jscs
        ]
        services += [
            {
                "id": f"{self.did}#vpr-schemas-{e['schemaBaseId']}-c-vp-{i}",
                "type": LINKED_VP_TYPE,
                "serviceEndpoint": f"{self.public_url}/vt/{e['schemaBaseId']}-c-vp-{i}.json",
            }
            for i, e in enumerate(self.linked)
        ]
        services.append({"id": f"{self.did}#didcomm", "type": "DIDCommMessaging", "serviceEndpoint": "wss://x"})
        return MockResponse({"id": self.did, "service": services})

    def linked_subjects(self):
        return [e["credential"]["credentialSubject"].get("id") for e in self.linked]


class FakeIndexer:
    """`/verana/perm/v1/list` with permissions that turn ACTIVE after a few reads."""

    def __init__(self, session, base_url, failures=0):
        self.base_url = base_url
        self.permissions = {}
        self.failures = failures
        self.requests = 0
        session.route("GET", f"{base_url}/verana/perm/v1/list", self._list)

    def add(self, schema_id, perm_id, perm_type, did, state="ACTIVE", activate_after=0):
        self.permissions.setdefault(str(schema_id), []).append({
            "id": perm_id,
            "type": perm_type,
            "perm_state": state,
            "did": did,
            "schema_id": schema_id,
            "_activate_after": activate_after,
            "_seen": 0,
        })

    def _list(self, method, url, kwargs):
        self.requests += 1
        if self.failures:
            self.failures -= 1
            return MockResponse({"error": "unavailable"}, status_code=503)
        visible = []
        for perm in self.permissions.get(str(kwargs["params"]["schema_id"]), []):
            if perm["perm_state"] == "PENDING" and perm["_seen"] >= perm["_activate_after"]:
                perm["perm_state"] = "ACTIVE"
            perm["_seen"] += 1
            visible.append({k: v for k, v in perm.items() if not k.startswith("_")})
        return MockResponse({"permissions": visible})


# action -> (event type, id attribute)
TX_EVENTS = {
    "create-trust-registry": ("create_trust_registry", "trust_registry_id"),
    "create-credential-schema": ("create_credential_schema", "credential_schema_id"),
    "create-root-perm": ("create_root_permission", "root_permission_id"),
    "create-perm": ("create_permission", "permission_id"),
    "start-perm-vp": ("start_permission_vp", "permission_id"),
    "set-perm-vp-validated": ("set_permission_vp_validated", None),
}


class FakeVeranad:
    """Enough of the `veranad` CLI for submission, event queries and accounts."""

    def __init__(self, indexer=None, balance=1000000, keys=("vs-demo-admin",), lag=0, first_id=100,
                 activate_after=2, drop_events=()):
        self.indexer = indexer
        self.balances = {f"verana1{k}": balance for k in keys}
        self.keys = set(keys)
        self.lag = lag
        self.next_id = first_id
        self.activate_after = activate_after
        self.drop_events = set(drop_events)
        self.events = {}
        self.txs = []
        self.commands = []

    def __call__(self, cmd, capture_output=True, text=True, timeout=None):
        self.commands.append(cmd)
        args = list(cmd[1:])
        if args[0] == "tx":
            return self._tx(cmd, args)
        if args[:2] == ["q", "tx"]:
            return self._query_tx(cmd, args[2])
        if args[:3] == ["q", "bank", "balances"]:
            amount = self.balances.get(args[3], 0)
            return self._done(cmd, json.dumps({"balances": [{"denom": "uvna", "amount": str(amount)}] if amount else []}))
        if args[:2] == ["keys", "show"]:
            if args[2] not in self.keys:
                return self._done(cmd, "", returncode=1, stderr=f"{args[2]} is not a valid name or address")
            return self._done(cmd, f"verana1{args[2]}\n" if "-a" in args else f"name: {args[2]}\n")
        if args[:2] == ["keys", "add"]:
            self.keys.add(args[2])
            self.balances.setdefault(f"verana1{args[2]}", 0)
            return self._done(cmd, f"- name: {args[2]}\n", stderr="**Important** write this mnemonic phrase")
        raise AssertionError(f"unexpected veranad call: {cmd}")

    @staticmethod
    def _done(cmd, stdout, returncode=0, stderr=""):
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    def _tx(self, cmd, args):
        action = args[2]
        sender = args[args.index("--from") + 1]
        tx_hash = f"HASH{len(self.txs) + 1:04d}"
        self.txs.append({"action": action, "args": args, "from": sender, "hash": tx_hash})

        event_type, attribute = TX_EVENTS[action]
        attributes = [{"key": "creator", "value": f"verana1{sender}"}]
        if attribute and action not in self.drop_events:
            new_id = str(self.next_id)
            self.next_id += 1
            attributes.append({"key": attribute, "value": new_id})
            self._index(action, args, new_id)
        self.events[tx_hash] = [{"type": "message", "attributes": []},
                                {"type": event_type, "attributes": attributes}]
        body = json.dumps({"height": "0", "txhash": tx_hash, "code": 0, "raw_log": ""})
        return self._done(cmd, f"gas estimate: 184520\n{body}\n")

    def _index(self, action, args, new_id):
        if self.indexer is None:
            return
        if action == "create-root-perm":
            self.indexer.add(args[3], new_id, "ECOSYSTEM", args[4], state="PENDING",
                             activate_after=self.activate_after)
        elif action == "create-perm":
            self.indexer.add(args[3], new_id, args[4].upper(), args[5], state="PENDING",
                             activate_after=self.activate_after)

    def _query_tx(self, cmd, tx_hash):
        if self.lag:
            self.lag -= 1
            return self._done(cmd, "", returncode=1, stderr=f"tx ({tx_hash}) not found")
        return self._done(cmd, json.dumps({"txhash": tx_hash, "code": 0, "events": self.events[tx_hash]}))

    def actions(self):
        return [tx["action"] for tx in self.txs]
