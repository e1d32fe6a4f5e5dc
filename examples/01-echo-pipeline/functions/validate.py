def request(ctx):
    name = ctx.args.get("name", "")
    if ctx.util.is_null_or_blank(name):
        ctx.util.error("name is required", "ValidationError")
    if name == "cached":
        # skip formatting entirely
        ctx.runtime.early_return("Hello again!")
    return {"payload": name.strip()}


def response(ctx):
    return ctx.result["payload"]
