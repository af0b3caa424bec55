"""
SmartDesk Dashboard Module

Server-rendered Jinja2 pages with TailwindCSS + DaisyUI that read the
JSON API from the browser.
"""
