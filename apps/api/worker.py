"""RQ worker process entrypoint for the analysis phase of audit jobs."""

import logging

from rq import Worker

from services.audit_queue import AUDIT_QUEUE_NAME, get_redis_connection


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    redis_conn = get_redis_connection()
    worker = Worker([AUDIT_QUEUE_NAME], connection=redis_conn)
    logging.getLogger(__name__).info("Audit worker listening on queue %s", AUDIT_QUEUE_NAME)
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
