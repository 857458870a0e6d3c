from __future__ import annotations

import json

SDK_SCRIPT_URL = "https://js-cdn.music.apple.com/musickit/v1/musickit.js"

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  {icon_link}
  <script>
  var music;

  var __coda = (function () {{
    var backlog = [];
    var ready = false;

    function send(name, body) {{
      try {{
        window.pywebview.api.post_message(name, body);
      }} catch (err) {{
        // Dropped: console is hooked into this channel.
      }}
    }}

    window.addEventListener('pywebviewready', function () {{
      ready = true;
      backlog.splice(0).forEach(function (entry) {{ send(entry[0], entry[1]); }});
    }});

    return {{
      post: function (name, body) {{
        if (body === undefined) body = null;
        if (ready) {{
          send(name, body);
        }} else {{
          backlog.push([name, body]);
        }}
      }}
    }};
  }})();

  function log(message) {{
    __coda.post('log', String(message));
  }}

  function throwLoadingError(err) {{
    __coda.post('loadFailed', err ? err.toString() : 'Error loading webpage');
  }}

  (function () {{
    function safeToString(v) {{
      try {{
        if (typeof v === 'string') return v;
        return JSON.stringify(v);
      }} catch (e) {{
        try {{ return String(v); }} catch (_) {{ return '[unstringifiable]'; }}
      }}
    }}

    ['log', 'info', 'warn', 'error', 'debug'].forEach(function (level) {{
      var orig = console[level];
      console[level] = function () {{
        var args = Array.prototype.slice.call(arguments);
        __coda.post('log', level + ': ' + args.map(safeToString).join(' '));
        return orig.apply(console, args);
      }};
    }});

    window.addEventListener('error', function (e) {{
      var msg = (e && e.message ? e.message : 'Unknown error')
        + (e && e.filename ? ' @ ' + e.filename + ':' + e.lineno + ':' + e.colno : '');
      __coda.post('error', msg);
    }});

    window.addEventListener('unhandledrejection', function (e) {{
      var r = e && e.reason;
      __coda.post('error', 'UnhandledRejection: ' + (r && r.stack ? r.stack : safeToString(r)));
    }});
  }})();

  document.addEventListener('musickitloaded', function () {{
    try {{
      music = MusicKit.configure({{
        developerToken: {developer_token},
        app: {{
          name: {app_name},
          build: {app_build}
        }}
      }});
      __coda.post('loaded', '');
    }} catch (err) {{
      throwLoadingError(err);
    }}
  }});
  </script>
  <script type="text/javascript" src="{sdk_url}"
      onerror="throwLoadingError('Error loading MusicKit JS')"></script>
</head>
<body></body>
</html>
"""


def render_page(
    developer_token: str,
    app_name: str,
    app_build: str,
    app_icon_url: str | None = None,
    sdk_url: str = SDK_SCRIPT_URL,
) -> str:
    icon_link = ""
    if app_icon_url:
        icon_link = f'<link rel="apple-music-app-icon" href="{_attr(app_icon_url)}" />'
    return _PAGE_TEMPLATE.format(
        title=_attr(app_name),
        icon_link=icon_link,
        developer_token=_js(developer_token),
        app_name=_js(app_name),
        app_build=_js(app_build),
        sdk_url=_attr(sdk_url),
    )


def _js(value: str) -> str:
    # json.dumps gives a valid JS string literal; "</" is split so it cannot close the script tag.
    return json.dumps(value).replace("</", "<\\/")


def _attr(value: str) -> str:
    return (
        value.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")
    )
