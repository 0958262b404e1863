import html
from string import Template
from typing import Sequence

HOME_HTML = Template("""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>webtail</title>
  <style>
    body { font-family: sans-serif; }
    pre { margin: 0; padding: 0; }
    #status { color: #888; }
  </style>
</head>
<body>
  $selector
  <span id="status"></span>
  <div id="fileData"></div>
  <script>
    (function() {
      var data = document.getElementById("fileData");
      var status = document.getElementById("status");
      var select = document.getElementById("fileName");
      var scheme = location.protocol === "https:" ? "wss://" : "ws://";
      var conn = null;

      function url() {
        var u = scheme + location.host + "/ws";
        if (select && select.value) {
          u += "?file=" + encodeURIComponent(select.value);
        }
        return u;
      }

      function connect() {
        conn = new WebSocket(url());
        conn.onopen = function() { status.textContent = ""; };
        conn.onmessage = function(evt) {
          if (evt.data !== "") {
            var block = document.createElement("pre");
            block.textContent = evt.data;
            data.appendChild(block);
            window.scrollTo(0, document.body.scrollHeight);
          }
        };
        conn.onclose = function() {
          status.textContent = "Connection closed";
          setTimeout(connect, $reconnect_ms);
        };
      }

      if (select) {
        select.addEventListener("change", function() {
          data.textContent = "";
          conn.close();
        });
      }
      connect();
    })();
  </script>
</body>
</html>
""")

RECONNECT_MS = 1000


def render_home(names: Sequence[str]) -> str:
    """Landing page; ``names`` fills the source selector (empty hides it)."""
    selector = ""
    if names:
        options = "\n".join(
            f'    <option value="{html.escape(n)}">{html.escape(n)}</option>' for n in names
        )
        selector = f'File: <select id="fileName">\n{options}\n  </select>'
    return HOME_HTML.substitute(selector=selector, reconnect_ms=RECONNECT_MS)
