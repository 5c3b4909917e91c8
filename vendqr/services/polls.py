import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyVoted, BadRequest, InvalidOption, PollExpired, PollInactive, PollNotFound,
)
from ..models import db, Poll, PollOption, PollVote
from ..time_utils import utcnow, to_utc_z

logger = logging.getLogger(__name__)

VOTE_TYPES = ('like', 'dislike')


@dataclass(frozen=True)
class RegisteredVoter:
    customer_id: int


@dataclass(frozen=True)
class AnonymousVoter:
    session_id: int


VoterIdentity = RegisteredVoter | AnonymousVoter


def voter_for(customer_id: int | None, session_id: int) -> VoterIdentity:
    if customer_id is not None:
        return RegisteredVoter(customer_id)
    return AnonymousVoter(session_id)


def _voter_filter(voter: VoterIdentity):
    if isinstance(voter, RegisteredVoter):
        return PollVote.customer_id == voter.customer_id
    return PollVote.session_id == voter.session_id


def approve_percent(likes: int, total: int) -> float:
    if not total:
        return 0.0
    pct = (Decimal(100) * likes / Decimal(total)).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)
    return float(pct)


# ---------------------------------------------------------------------------
# vendor side

def create_poll(vendor_id: int, machine_id: int, question: str, options: list[dict],
                expires_at=None) -> Poll:
    question = (question or '').strip()
    if not 5 <= len(question) <= 500:
        raise BadRequest('Question must be between 5 and 500 characters')
    if not isinstance(options, list) or not 2 <= len(options) <= 20:
        raise BadRequest('A poll needs between 2 and 20 options')

    poll = Poll(vendor_id=vendor_id, machine_id=machine_id, question=question,
                is_active=True, expires_at=expires_at)
    for index, opt in enumerate(options):
        text = (opt.get('text') or '').strip() if isinstance(opt, dict) else ''
        if not 1 <= len(text) <= 255:
            raise BadRequest('Option text must be between 1 and 255 characters')
        poll.options.append(PollOption(
            option_text=text,
            image_url=opt.get('imageUrl') or None,
            product_id=opt.get('productId'),
            display_order=index,
        ))
    db.session.add(poll)
    db.session.commit()
    return poll


def list_polls(machine_id: int) -> list[dict]:
    rows = db.session.execute(
        db.select(Poll, func.count(PollVote.id))
        .outerjoin(PollVote, PollVote.poll_id == Poll.id)
        .where(Poll.machine_id == machine_id)
        .group_by(Poll.id)
        .order_by(Poll.created_at.desc(), Poll.id.desc())
    ).all()
    return [{
        'id': poll.id,
        'question': poll.question,
        'isActive': poll.is_active,
        'totalVotes': total,
    } for poll, total in rows]


def close_poll(poll: Poll) -> Poll:
    poll.is_active = False
    poll.closed_at = utcnow()
    db.session.commit()
    return poll


def results(poll_id: int) -> list[dict]:
    likes = func.count(case((PollVote.vote_type == 'like', 1)))
    dislikes = func.count(case((PollVote.vote_type == 'dislike', 1)))
    rows = db.session.execute(
        db.select(PollOption, likes, dislikes, func.count(PollVote.id))
        .outerjoin(PollVote, PollVote.poll_option_id == PollOption.id)
        .where(PollOption.poll_id == poll_id)
        .group_by(PollOption.id)
        .order_by(PollOption.display_order)
    ).all()
    out = []
    for option, like_count, dislike_count, total in rows:
        out.append({
            'optionId': option.id,
            'optionText': option.option_text,
            'imageUrl': option.image_url,
            'approveCount': like_count,
            'denyCount': dislike_count,
            'totalVotes': total,
            'approvePercent': approve_percent(like_count, total),
        })
    out.sort(key=lambda r: (r['approvePercent'], r['totalVotes']), reverse=True)
    return out


# ---------------------------------------------------------------------------
# customer side

def active_polls(machine_id: int, voter: VoterIdentity, now=None) -> list[dict]:
    now = now or utcnow()
    polls = db.session.execute(
        db.select(Poll)
        .where(
            Poll.machine_id == machine_id,
            Poll.is_active.is_(True),
            (Poll.expires_at.is_(None)) | (Poll.expires_at > now),
        )
        .order_by(Poll.created_at.desc(), Poll.id.desc())
    ).scalars().all()
    if not polls:
        return []

    poll_ids = [p.id for p in polls]
    counts = dict(db.session.execute(
        db.select(PollVote.poll_option_id, func.count(PollVote.id))
        .where(PollVote.poll_id.in_(poll_ids))
        .group_by(PollVote.poll_option_id)
    ).all())
    mine = dict(db.session.execute(
        db.select(PollVote.poll_option_id, PollVote.vote_type)
        .where(PollVote.poll_id.in_(poll_ids), _voter_filter(voter))
    ).all())

    out = []
    for poll in polls:
        options = []
        for opt in poll.options:
            item = opt.to_dict()
            item['voteCount'] = counts.get(opt.id, 0)
            item['myVote'] = mine.get(opt.id)
            options.append(item)
        out.append({
            'id': poll.id,
            'question': poll.question,
            'expiresAt': to_utc_z(poll.expires_at),
            'options': options,
            'hasVoted': any(o['myVote'] for o in options),
        })
    return out


def vote(poll_id: int, option_id: int, voter: VoterIdentity, vote_type: str = 'like',
         machine_id: int | None = None, now=None) -> PollVote:
    """
    Record one vote on a poll option.

    Registered customers are unique per option by customer id, anonymous
    sessions by session id. Raises PollNotFound, PollInactive, PollExpired,
    InvalidOption or AlreadyVoted.
    """
    if vote_type not in VOTE_TYPES:
        raise BadRequest('voteType must be like or dislike')
    now = now or utcnow()
    poll = db.session.get(Poll, poll_id)
    if poll is None or (machine_id is not None and poll.machine_id != machine_id):
        raise PollNotFound()
    if not poll.is_active:
        raise PollInactive()
    if poll.expires_at is not None and poll.expires_at < now:
        raise PollExpired()
    option = db.session.get(PollOption, option_id)
    if option is None or option.poll_id != poll.id:
        raise InvalidOption()

    already = db.session.execute(
        db.select(PollVote.id).where(PollVote.poll_option_id == option.id, _voter_filter(voter))
    ).first()
    if already is not None:
        raise AlreadyVoted()

    ballot = PollVote(
        poll_id=poll.id,
        poll_option_id=option.id,
        vote_type=vote_type,
        created_at=now,
    )
    if isinstance(voter, RegisteredVoter):
        ballot.customer_id = voter.customer_id
    else:
        ballot.session_id = voter.session_id
    db.session.add(ballot)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.info('duplicate vote on option %s rejected', option.id)
        raise AlreadyVoted() from exc
    return ballot
