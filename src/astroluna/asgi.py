import os
import asyncio
import socket
from django.core.asgi import get_asgi_application
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'astroluna.settings')

# Get the standard Django ASGI application
django_app = get_asgi_application()

LEADER_KEY = "astroluna_scheduler_leader"
LEADER_LOCK_TIMEOUT = 30

_state = {}


def _owner_id() -> str:
	return f"{socket.gethostname()}:{os.getpid()}"


def _acquire_leader_lock(owner: str) -> bool:
	"""Try to become the single worker that runs background jobs.

	Uses a raw Redis SET NX when django-redis backs the cache, otherwise the
	atomic `cache.add`.
	"""
	from django.core.cache import cache
	from astroluna.utils import redis_cache_enabled

	if redis_cache_enabled():
		from django_redis import get_redis_connection
		conn = get_redis_connection('default')
		return bool(conn.set(LEADER_KEY, owner, nx=True, ex=LEADER_LOCK_TIMEOUT))
	return cache.add(LEADER_KEY, owner, LEADER_LOCK_TIMEOUT)


def _renew_leader_lock(owner: str) -> bool:
	from django.core.cache import cache
	from astroluna.utils import redis_cache_enabled

	if redis_cache_enabled():
		from django_redis import get_redis_connection
		conn = get_redis_connection('default')
		val = conn.get(LEADER_KEY)
		if val is None or val.decode() != owner:
			return False
		conn.expire(LEADER_KEY, LEADER_LOCK_TIMEOUT)
		return True
	if cache.get(LEADER_KEY) != owner:
		return False
	cache.touch(LEADER_KEY, LEADER_LOCK_TIMEOUT)
	return True


def _release_leader_lock(owner: str) -> None:
	from django.core.cache import cache
	from astroluna.utils import redis_cache_enabled

	if redis_cache_enabled():
		from django_redis import get_redis_connection
		conn = get_redis_connection('default')
		val = conn.get(LEADER_KEY)
		if val is not None and val.decode() == owner:
			conn.delete(LEADER_KEY)
		return
	if cache.get(LEADER_KEY) == owner:
		cache.delete(LEADER_KEY)


async def _renew_loop(owner: str, logger):
	interval = max(5, int(LEADER_LOCK_TIMEOUT / 2))
	try:
		while True:
			await asyncio.sleep(interval)
			try:
				still_leader = await asyncio.to_thread(_renew_leader_lock, owner)
			except Exception as e:
				logger.debug("Leader renew loop: renew attempt failed, will retry: %s", e)
				continue
			if not still_leader:
				logger.info("Leader renew loop: lost ownership of key %s", LEADER_KEY)
				break
	except asyncio.CancelledError:
		logger.info("Leader renew loop cancelled for key %s", LEADER_KEY)
		return


async def _startup(logger):
	from currency.scheduler import RatesRefresher

	owner = _owner_id()
	try:
		got_lock = await asyncio.to_thread(_acquire_leader_lock, owner)
	except Exception as e:
		logger.error("ASGI startup: leader lock check failed: %s", e, exc_info=True)
		return

	if not got_lock:
		logger.info("ASGI startup: did not acquire leader lock; scheduler not started in this worker (PID %d)", os.getpid())
		return

	refresher = RatesRefresher()
	try:
		refresher.start()
	except Exception as e:
		logger.exception("ASGI startup: scheduler start failed: %s", e)
		# Release lock on failure so another worker can try
		await asyncio.to_thread(_release_leader_lock, owner)
		return

	_state['owner'] = owner
	_state['refresher'] = refresher
	_state['renew_task'] = asyncio.create_task(_renew_loop(owner, logger))
	logger.info("ASGI startup: acquired leader lock and started scheduler in this worker (PID %d)", os.getpid())


async def _shutdown(logger):
	renew_task = _state.pop('renew_task', None)
	if renew_task:
		renew_task.cancel()
	refresher = _state.pop('refresher', None)
	if refresher:
		refresher.shutdown()
		logger.info("ASGI shutdown: rates scheduler stopped")
	owner = _state.pop('owner', None)
	if owner:
		await asyncio.to_thread(_release_leader_lock, owner)
		logger.info("ASGI shutdown: released leader lock (owner=%s)", owner)


async def application(scope, receive, send):
	"""ASGI entrypoint: Django plus lifespan hooks for the background scheduler."""
	if scope['type'] == 'lifespan':
		import logging
		logger = logging.getLogger('currency')
		while True:
			message = await receive()
			if message['type'] == 'lifespan.startup':
				await _startup(logger)
				await send({'type': 'lifespan.startup.complete'})
			elif message['type'] == 'lifespan.shutdown':
				try:
					await _shutdown(logger)
				except Exception as e:
					logger.warning("ASGI shutdown: cleanup failed: %s", e)
				await send({'type': 'lifespan.shutdown.complete'})
				return
	else:
		# Forward all other requests to Django
		await django_app(scope, receive, send)
