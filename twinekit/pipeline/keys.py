"""Well-known execution context keys.

Keys are namespaced strings so that components written independently can share
one environment without colliding.  Components may add their own keys; these
are the ones the core reads or writes.
"""

# ── Pipeline bookkeeping ────────────────────────────────────────────────────
RESOURCE_SERVICE_NAME = "twine.ResourceServiceName"
REQUEST_TEMPLATE_NAME = "twine.RequestTemplateName"
REQUEST_INSTANCE = "twine.RequestInstance"
HANDLER_EXECUTED = "twine.HandlerExecuted"
IS_REMOTE_FAULTED = "twine.IsRemoteFaulted"
FAULT_EXCEPTION = "twine.FaultException"
HOST = "twine.Host"
PORT = "twine.Port"
REQUEST_TIMEOUT = "twine.RequestTimeout"
SERVER_CONTEXT = "twine.ServerContext"

# ── Network / HTTP ───────────────────────────────────────────────────────────
CONNECT_TIMEOUT = "net.ConnectTimeout"
REQUEST_PROTOCOL = "http.RequestProtocol"
REQUEST_METHOD = "http.RequestMethod"
REQUEST_PATH = "http.RequestPath"
REQUEST_HEADERS = "http.RequestHeaders"
REQUEST_BODY = "http.RequestBody"
REQUEST_PARAMETERS = "http.RequestParametersHash"
REQUEST_PARAMETERS_STRIP_NIL = "http.RequestParametersHash.StripNilValues"
RESPONSE_STATUS_CODE = "http.ResponseStatusCode"
RESPONSE_REASON_PHRASE = "http.ResponseReasonPhrase"
RESPONSE_HEADERS = "http.ResponseHeaders"
RESPONSE_BODY = "http.ResponseBody"

# ── Media ────────────────────────────────────────────────────────────────────
REQUEST_CONTENT = "media.RequestContent"
RESPONSE_CONTENT = "media.ResponseContent"

# ── SDK ──────────────────────────────────────────────────────────────────────
SDK_CALL = "sdk.Call"

# ── Flow trace ───────────────────────────────────────────────────────────────
TRACE_ORIGIN = "flowtrace.Origin"
TRACE_PARENT = "flowtrace.Parent"
TRACE_REQUEST = "flowtrace.Request"
TRACE_INBOUND = "flowtrace.Inbound"
