# pages served by certinator: the request form, the (stub) issuance and the health check
from flask import Response

METHOD_NOT_SUPPORTED = "Method is not supported."

#html rendered in / route
INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8" />
</head>
<body>
<div>
  <form method="POST" action="/create">
      <label>Domain Name</label><input name="domain" type="text" value="" />
      <input type="submit" value="Request Certificate" />
  </form>
</div>
</body>
</html>
"""

#html rendered after a POST on /create, the domain is inserted as submitted
INDEX_RESPONSE = """
<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8" />
</head>
<body>
	<div>
		<h1>Request for domain %s generated successfully<h1>
	</div>
</body>
</html>
"""

HEALTH_BODY = '{"status": "UP"}'

HTML = "text/html; charset=utf-8"
JSON = "application/json; charset=utf-8"
PLAIN = "text/plain; charset=utf-8"


def plain_error(message, status_code):
    response = Response(message, status=status_code, content_type=PLAIN)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def method_not_supported():
    return plain_error(METHOD_NOT_SUPPORTED, 404)


def home(request):
    if request.method != "GET":
        return method_not_supported()
    return Response(INDEX_HTML, status=200, content_type=HTML)


def issue_certificate(request):
    """
    Acknowledge a certificate request. Nothing is issued, the submitted
    domain is echoed back without escaping.
    """
    if request.method != "POST":
        return method_not_supported()
    #body value first, then the query string
    domain = request.form.get("domain", request.args.get("domain", ""))
    return Response(INDEX_RESPONSE % domain, status=200, content_type=HTML)


def health(request):
    if request.method != "GET":
        return method_not_supported()
    return Response(HEALTH_BODY, status=200, content_type=JSON)


def register_pages(server):
    server.register_handler("/create", issue_certificate)
    server.register_handler("/health", health)
    server.register_handler("/", home)
