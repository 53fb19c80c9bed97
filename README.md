# nezhadash

Server-side pieces of a host monitoring dashboard as a plain Python library.
Each piece takes its collaborators (senders, schedulers, storage callbacks) as
arguments, so it can be used and tested on its own.

## What is in it

- **`nezhadash.utils`**: helpers.
  - `ip_desensitize` masks the middle of IPv4 and IPv6 addresses.
  - `split_ip_addr` splits a `"v4/v6"` string into `(ipv4, ipv6, valid_ip)`.
  - `generate_random_string` builds random alphanumeric secrets with `secrets`.
  - `uint64_sub_int64` subtracts with clamping at zero.
  - `is_file_exists` and `is_windows` are small checks.
  - `gjson_get` looks up a dot-separated path in a JSON document. Keys can be
    escaped with `\.`, numbers index arrays, and `#` gives an array's length. A
    missing path raises `GjsonNotFoundError`.
  - `parse_string_map` turns a JSON object into a `dict[str, str]`. It returns
    `None` for an empty string and raises `GjsonWrongTypeError` for anything
    that is not an object.
- **`nezhadash.ddns`**: dynamic DNS.
  - `split_domain_soa` finds a domain's zone by sending SOA queries with
    dnspython. It returns `(prefix, zone)` and raises `LookupError` if no zone
    is found.
  - `init_dns_servers` replaces the default resolvers with a comma-separated
    list.
  - `Provider` takes a `DDNSProfile`, the host's `IP` addresses and a setter.
    `update_domain()` pushes `A` and/or `AAAA` `Record`s for every domain,
    retries up to `max_retries` times, and returns `{domain: succeeded}`.
  - `DummySetter` accepts records without contacting anything.
- **`nezhadash.webhook`**: `WebhookProvider` is a setter that sends an HTTP
  request built from the profile with `requests`.
  - The method comes from `Method` and the body kind (JSON or form) from
    `RequestType`.
  - `#ip#`, `#domain#`, `#type#`, `#record#`, `#access_id#` and
    `#access_secret#` are filled into the URL query values, the headers (a
    JSON object) and the body.
- **`nezhadash.streams`**: byte-stream adapters.
  - `IOStreamWrapper` turns a `recv`/`send` message stream into a
    `read`/`write` object. `wait()` blocks until `close()` is called.
  - `SafeWebSocketConn` serialises writes to a WebSocket connection. When it
    reads a text message (`MessageType.TEXT`), it puts a zero byte in front.
- **`nezhadash.iostream`**: `StreamHub` registers streams by id.
  - It pairs a user side and an agent side (`user_connected`,
    `agent_connected`).
  - `start_stream` relays bytes both ways until one direction ends. If a side
    is missing after the timeout, it raises `StreamTimeoutError`.
  - `parse_stream_id` reads the stream id from the first agent message.
- **`nezhadash.auth`**: `AuthHandler` supplies a `client_secret` as request
  metadata. `ClientAuthenticator.check` maps incoming metadata to a known
  server id, or raises `AuthenticationError`.
- **`nezhadash.notification`**: `NotificationCenter` groups notification
  methods by tag (`add`, `update`, `refresh_or_add`, `delete`).
  - `send` delivers a message to every method in a group. By default it calls
    each method's `send(desc, server)`.
  - With a mute label, a repeated message is held back. The first delivery
    mutes the label for 15 minutes. Each later delivery doubles the wait, up
    to one day.
  - `unmute` clears a label.
  - Label builders such as `server_incident_label` and
    `service_state_changed_label` are provided.
- **`nezhadash.status`**: `ServiceStatus`, `get_status_code` (classifies an
  up-percentage) and `status_code_to_string`.
- **`nezhadash.sentinel`**: `ServiceSentinel` takes `Monitor`s and check
  results (`TaskResult`) through `handle_report`.
  - It keeps today's counts, the last 30 samples and a 30-day
    `ServiceItemResponse` per monitor (`load_stats`,
    `refresh_monthly_service_status`).
  - It sends latency, state-change and SSL-certificate alerts through a
    `NotificationCenter`.
  - Scheduling, persistence, trigger tasks and server names are passed in as
    callables or mappings.

## Install

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from nezhadash.ddns import DDNSProfile, IP, Provider
from nezhadash.utils import ip_desensitize, split_ip_addr
from nezhadash.webhook import Method, RequestType, WebhookProvider

print(ip_desensitize("103.80.236.249"))      # 103.****.249
print(split_ip_addr("1.2.3.4/2001:db8::1"))  # ('1.2.3.4', '2001:db8::1', '1.2.3.4')

profile = DDNSProfile(
    domains=["www.example.com"],
    enable_ipv4=True,
    webhook_url="http://ddns.example.com/api",
    webhook_method=Method.POST,
    webhook_request_type=RequestType.JSON,
    webhook_request_body='{"ip":"#ip#","record":"#record#"}',
)
provider = Provider(profile, IP(ipv4_addr="1.1.1.1"), WebhookProvider(profile))
results = provider.update_domain()  # {"www.example.com": True} on success
```

## What it does not do

This is a library only. It has no command-line program, no web or RPC server,
and no dashboard pages. Nothing is stored by it: monitor history is handed to
the `save_history` callback you give `ServiceSentinel`, and earlier history is
read back only from the records you pass to its constructor. It has no built-in
notification channels either. Each notification method you add must do its own
sending, or you must give `NotificationCenter` a `sender`.