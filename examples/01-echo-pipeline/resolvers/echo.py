def request(ctx):
    return {"payload": ctx.args["msg"]}


def response(ctx):
    return ctx.result["payload"]
