"""
nginx configuration for the web tier (`frontend-nginx-config`).

Only generated when the user has not supplied `web.customNginxConfigMap`.
`default.conf` is assembled from a small route table so the HTTP and HTTPS
server blocks always carry the same locations.
"""
from ..models import KubeNovaSpec
from .common import BACKEND_BY_NAME, NGINX_CONFIG_MAP_NAME, common_labels

# upstream name -> backend component
UPSTREAMS = {
    "portal_api": "portal-api",
    "manager_api": "manager-api",
    "workload_api": "workload-api",
    "console_api": "console-api",
}

# (location, upstream)
WEBSOCKET_ROUTES = (
    ("/ws/v1/pod", "console_api"),
    ("/ws/v1/site-messages", "portal_api"),
)

# (location, upstream, timeout, buffered)
API_ROUTES = (
    ("/portal", "portal_api", "30s", True),
    ("/manager", "manager_api", "30s", True),
    ("/workload", "workload_api", "30s", True),
    ("/console", "console_api", "600s", False),
)

NGINX_CONF = """\
worker_processes auto;
worker_rlimit_nofile 65535;

error_log /var/log/nginx/error.log warn;

events {
    worker_connections 4096;
    use epoll;
    multi_accept on;
}

http {
    include /etc/nginx/mime.types;
    default_type application/octet-stream;

    log_format main '$remote_addr - $remote_user [$time_local] "$request" '
                    '$status $body_bytes_sent "$http_referer" '
                    '"$http_user_agent" "$http_x_forwarded_for" '
                    'rt=$request_time uct="$upstream_connect_time" '
                    'uht="$upstream_header_time" urt="$upstream_response_time"';

    access_log /var/log/nginx/access.log main;

    sendfile on;
    tcp_nopush on;
    tcp_nodelay on;
    keepalive_timeout 65;
    keepalive_requests 100;
    types_hash_max_size 2048;
    server_tokens off;

    client_body_buffer_size 128k;
    client_max_body_size 1024m;
    client_header_buffer_size 1k;
    large_client_header_buffers 4 16k;

    client_header_timeout 15s;
    client_body_timeout 15s;
    send_timeout 15s;

    gzip on;
    gzip_vary on;
    gzip_proxied any;
    gzip_comp_level 6;
    gzip_min_length 1000;
    gzip_types text/plain text/css text/xml text/javascript
               application/json application/javascript application/xml+rss
               image/svg+xml;

    limit_req_zone $binary_remote_addr zone=general:10m rate=100r/s;
    limit_req_zone $binary_remote_addr zone=api:10m rate=50r/s;
    limit_conn_zone $binary_remote_addr zone=addr:10m;

    include /etc/nginx/conf.d/*.conf;
}
"""

_PROXY_HEADERS = """\
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header X-Forwarded-Host $host;
        proxy_set_header X-Forwarded-Port $server_port;
"""

_SECURITY_HEADERS = """\
    add_header X-Frame-Options "SAMEORIGIN" always;
    add_header X-Content-Type-Options "nosniff" always;
    add_header X-XSS-Protection "1; mode=block" always;
    add_header Referrer-Policy "no-referrer-when-downgrade" always;
"""

_STATIC_LOCATIONS = r"""
    location ~* \.(js|css)$ {
        expires 1y;
        add_header Cache-Control "public, must-revalidate";
        access_log off;
    }

    location ~* \.html$ {
        expires -1;
        add_header Cache-Control "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0";
    }

    location ~ /\. {
        deny all;
        access_log off;
        log_not_found off;
    }

    location / {
        try_files $uri $uri/ /index.html;
        add_header Cache-Control "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0";
    }

    error_page 404 /index.html;
    error_page 500 502 503 504 /50x.html;

    location = /50x.html {
        root /usr/share/nginx/html;
        internal;
    }
"""


def _upstream(name: str, server: str) -> str:
    return (
        f"upstream {name} {{\n"
        f"    least_conn;\n"
        f"    server {server} max_fails=3 fail_timeout=30s;\n"
        f"    keepalive 32;\n"
        f"}}\n"
    )


def _websocket_location(path: str, upstream: str) -> str:
    return (
        f"\n    location {path} {{\n"
        f"        proxy_pass http://{upstream};\n"
        f"        proxy_http_version 1.1;\n"
        f"        proxy_set_header Upgrade $http_upgrade;\n"
        f"        proxy_set_header Connection \"upgrade\";\n"
        f"{_PROXY_HEADERS}"
        f"        proxy_connect_timeout 7d;\n"
        f"        proxy_send_timeout 7d;\n"
        f"        proxy_read_timeout 7d;\n"
        f"        proxy_buffering off;\n"
        f"        proxy_request_buffering off;\n"
        f"        limit_req zone=api burst=10 nodelay;\n"
        f"    }}\n"
    )


def _api_location(path: str, upstream: str, timeout: str, buffered: bool) -> str:
    if buffered:
        buffering = (
            "        proxy_buffering on;\n"
            "        proxy_buffer_size 4k;\n"
            "        proxy_buffers 8 4k;\n"
        )
    else:
        buffering = (
            "        proxy_buffering off;\n"
            "        proxy_request_buffering off;\n"
        )
    return (
        f"\n    location {path} {{\n"
        f"        proxy_pass http://{upstream};\n"
        f"{_PROXY_HEADERS}"
        f"        proxy_http_version 1.1;\n"
        f"        proxy_set_header Connection \"\";\n"
        f"        proxy_connect_timeout {timeout};\n"
        f"        proxy_send_timeout {timeout};\n"
        f"        proxy_read_timeout {timeout};\n"
        f"{buffering}"
        f"        proxy_next_upstream error timeout invalid_header http_500 http_502 http_503 http_504;\n"
        f"        proxy_next_upstream_tries 2;\n"
        f"        limit_req zone=api burst=20 nodelay;\n"
        f"    }}\n"
    )


def _minio_location(spec: KubeNovaSpec) -> str:
    prefix = spec.minio_proxy_path().rstrip("/")
    scheme = "https" if spec.storage.tls_enabled else "http"
    block = (
        f"\n    location {prefix}/ {{\n"
        f"        rewrite ^{prefix}/(.*)$ /$1 break;\n"
        f"        proxy_pass {scheme}://minio_backend;\n"
        f"        proxy_set_header Host $http_host;\n"
        f"        proxy_set_header X-Real-IP $remote_addr;\n"
        f"        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;\n"
        f"        proxy_set_header X-Forwarded-Proto $scheme;\n"
        f"        proxy_http_version 1.1;\n"
        f"        proxy_set_header Connection \"\";\n"
        f"        client_max_body_size 5000m;\n"
        f"        proxy_connect_timeout 600s;\n"
        f"        proxy_send_timeout 600s;\n"
        f"        proxy_read_timeout 600s;\n"
        f"        proxy_buffering off;\n"
        f"        proxy_request_buffering off;\n"
    )
    if spec.storage.tls_enabled:
        block += (
            "        proxy_ssl_verify off;\n"
            "        proxy_ssl_server_name on;\n"
            "        proxy_ssl_protocols TLSv1.2 TLSv1.3;\n"
        )
    return block + "    }\n"


def _locations(spec: KubeNovaSpec) -> str:
    parts = [_websocket_location(path, up) for path, up in WEBSOCKET_ROUTES]
    parts.extend(_api_location(*route) for route in API_ROUTES)
    if spec.minio_proxy_enabled:
        parts.append(_minio_location(spec))
    parts.append(_STATIC_LOCATIONS)
    return "".join(parts)


def _server_body(spec: KubeNovaSpec, hsts: bool = False) -> str:
    body = (
        "\n    root /usr/share/nginx/html;\n"
        "    index index.html;\n"
        "    charset utf-8;\n\n"
        f"{_SECURITY_HEADERS}"
    )
    if hsts:
        body += '    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;\n'
    body += (
        "\n    limit_req zone=general burst=200 nodelay;\n"
        "    limit_conn addr 20;\n"
        "\n    location /health {\n"
        "        access_log off;\n"
        "        return 200 \"healthy\\n\";\n"
        "        add_header Content-Type text/plain;\n"
        "    }\n"
    )
    return body + _locations(spec)


def build_default_conf(spec: KubeNovaSpec) -> str:
    conf = "".join(
        _upstream(name, f"{comp}:{BACKEND_BY_NAME[comp].port}") + "\n"
        for name, comp in UPSTREAMS.items()
    )
    if spec.minio_proxy_enabled:
        conf += _upstream("minio_backend", spec.storage.endpoint) + "\n"

    https = spec.web.nodeport_https_enabled
    conf += "server {\n    listen 80;\n    server_name _;\n"
    if https:
        conf += "\n    return 301 https://$host$request_uri;\n}\n"
        conf += (
            "\nserver {\n"
            "    listen 443 ssl http2;\n"
            "    server_name _;\n\n"
            "    ssl_certificate /etc/nginx/certs/tls.crt;\n"
            "    ssl_certificate_key /etc/nginx/certs/tls.key;\n"
            "    ssl_protocols TLSv1.2 TLSv1.3;\n"
            "    ssl_ciphers HIGH:!aNULL:!MD5;\n"
            "    ssl_prefer_server_ciphers on;\n"
            "    ssl_session_cache shared:SSL:10m;\n"
            "    ssl_session_timeout 10m;\n"
        )
        conf += _server_body(spec, hsts=True) + "}\n"
    else:
        conf += _server_body(spec) + "}\n"
    return conf


def build_nginx_config_map(spec: KubeNovaSpec, name: str, namespace: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": NGINX_CONFIG_MAP_NAME,
            "namespace": namespace,
            "labels": common_labels(name),
        },
        "data": {
            "nginx.conf": NGINX_CONF,
            "default.conf": build_default_conf(spec),
        },
    }
