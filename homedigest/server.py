import os

import uvicorn

from homedigest.api.main import app


def main():
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("INGRESS_PORT", "8099")))


if __name__ == "__main__":
    main()
