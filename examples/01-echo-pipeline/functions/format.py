def request(ctx):
    return {"payload": f"Hello, {ctx.prev['result']}!"}


def response(ctx):
    return ctx.result["payload"]
