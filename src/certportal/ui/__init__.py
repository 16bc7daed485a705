"""Browser-facing certificate portal UI.

- server-rendered Jinja2 pages, plain HTML forms + redirects
- every action is proxied to the upstream certificate API

Auth: the upstream-issued bearer token rides in an HttpOnly cookie.
"""
