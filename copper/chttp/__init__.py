"""HTTP routing, middlewares, request logging, HTML templates and a lifecycle-managed server."""