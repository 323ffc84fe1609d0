class FakeRedis:
    """
    Minimal async stand-in for redis.asyncio.Redis(decode_responses=True):
    hashes, plain strings and publish. Records published messages.
    """
    def __init__(self):
        self.hashes = {}
        self.strings = {}
        self.published = []
        self.closed = False

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

    async def hdel(self, key, *fields):
        h = self.hashes.get(key, {})
        return sum(1 for f in fields if h.pop(f, None) is not None)

    async def hvals(self, key):
        return list(self.hashes.get(key, {}).values())

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def delete(self, *keys):
        n = 0
        for k in keys:
            n += int(self.hashes.pop(k, None) is not None)
            n += int(self.strings.pop(k, None) is not None)
        return n

    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value):
        self.strings[key] = value
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self.closed = True
