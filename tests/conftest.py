# tests/conftest.py
import asyncio
import json

import pytest
from aiohttp import web, WSMsgType
from multidict import CIMultiDict

from core.config_manager import ConfigManager
from core.proxy_manager import ServerContext, create_app

HTML_PAGE = (
    "<!DOCTYPE html>\n"
    "<html><head><title>Upstream</title></head>"
    "<body><p>hello</p></body></html>"
)

JSON_PAYLOAD = json.dumps({"items": [1, 2, 3], "name": "upstream"}).encode()


async def html_page(request):
    headers = CIMultiDict()
    headers.add('Set-Cookie', 'sid=abc; Path=/')
    headers.add('Set-Cookie', 'tracker=xyz; Path=/')
    headers['X-Upstream'] = 'yes'
    return web.Response(text=HTML_PAGE, content_type='text/html', headers=headers)


async def json_page(request):
    return web.Response(
        body=JSON_PAYLOAD,
        content_type='application/json',
        headers={'Set-Cookie': 'sid=abc'}
    )


async def binary_page(request):
    return web.Response(body=bytes(range(256)), content_type='image/png')


async def broken_html(request):
    return web.Response(body=b'<html><head></head><body>\xff\xfe\xfd</body></html>',
                        headers={'Content-Type': 'text/html; charset=utf-8'})


async def not_found_page(request):
    return web.Response(text='<html><head></head><body>gone</body></html>',
                        content_type='text/html', status=404)


async def frame_denied(request):
    return web.Response(text='ok', headers={'X-Frame-Options': 'DENY'})


async def echo_headers(request):
    return web.json_response({key: value for key, value in request.headers.items()})


async def ws_echo(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type == WSMsgType.TEXT:
            await ws.send_str(msg.data)
        elif msg.type == WSMsgType.BINARY:
            await ws.send_bytes(msg.data)
    return ws


async def ws_close_after_first(request):
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    await ws.receive()
    await ws.close(code=4001, message=b'bye')
    return ws


class SlowUpstream:
    """Upstream, который не отвечает, пока его не отменят"""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = asyncio.Event()

    async def handler(self, request):
        self.started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled.set()
            raise
        return web.Response(text='late')


@pytest.fixture
async def upstream(aiohttp_server):
    app = web.Application()
    app.router.add_get('/html', html_page)
    app.router.add_get('/json', json_page)
    app.router.add_get('/binary', binary_page)
    app.router.add_get('/broken', broken_html)
    app.router.add_get('/missing', not_found_page)
    app.router.add_get('/frame', frame_denied)
    app.router.add_get('/headers', echo_headers)
    app.router.add_get('/ws', ws_echo)
    app.router.add_get('/ws-close', ws_close_after_first)
    return await aiohttp_server(app)


@pytest.fixture
async def slow_upstream(aiohttp_server):
    slow = SlowUpstream()
    app = web.Application()
    app.router.add_get('/slow', slow.handler)
    slow.server = await aiohttp_server(app)
    return slow


@pytest.fixture
def static_dir(tmp_path):
    directory = tmp_path / 'public'
    directory.mkdir()
    (directory / 'index.html').write_text('<html><body>index</body></html>', encoding='utf-8')
    (directory / 'app.js').write_text('console.log("static");', encoding='utf-8')
    return directory


@pytest.fixture
def config(tmp_path, static_dir):
    config = ConfigManager(config_path=tmp_path / 'config.json')
    config.set('server.static_dir', str(static_dir))
    return config


@pytest.fixture
def context(config):
    return ServerContext(config)


@pytest.fixture
async def proxy_client(aiohttp_client, context):
    return await aiohttp_client(create_app(context))
