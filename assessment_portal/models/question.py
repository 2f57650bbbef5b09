from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum
from assessment_portal.db import Base


class QuestionType(enum.Enum):
    single_choice = "single_choice"
    multiple_choice = "multiple_choice"
    text = "text"
    likert_scale = "likert_scale"
    rating_scale = "rating_scale"


class Domain(Base):
    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)

    subdomains = relationship("Subdomain", back_populates="domain")


class Subdomain(Base):
    __tablename__ = "subdomains"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    domain_id = Column(Integer, ForeignKey("domains.id"), nullable=False, index=True)

    domain = relationship("Domain", back_populates="subdomains")


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=False)
    text = Column(Text, nullable=False)
    question_type = Column(Enum(QuestionType), nullable=False, default=QuestionType.single_choice)
    is_likert = Column(Boolean, default=False, nullable=False)
    is_reversed = Column(Boolean, default=False, nullable=False)
    likert_points = Column(Integer, nullable=True)  # 3, 5 or 7
    domain_id = Column(Integer, ForeignKey("domains.id"), nullable=True)
    subdomain_id = Column(Integer, ForeignKey("subdomains.id"), nullable=True)

    options = relationship(
        "QuestionOption",
        back_populates="question",
        order_by="QuestionOption.position",
        cascade="all, delete-orphan",
    )


class QuestionOption(Base):
    """A scoring option. Likert options carry the unreversed scale value as score."""
    __tablename__ = "question_options"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=1)
    text = Column(String, nullable=False)
    score = Column(Integer, nullable=False, default=0)
    is_correct = Column(Boolean, default=False, nullable=False)

    question = relationship("Question", back_populates="options")
